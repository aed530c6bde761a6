from unittest.mock import MagicMock, patch

import pytest
import requests

from feedloop.core import config
from feedloop.core.security import hash_password, verify_password
from feedloop.email.resend_client import EmailSendError, invitation_email, send_email


def _response(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = text
    resp.json.return_value = payload if payload is not None else {"id": "em_1"}
    return resp


@pytest.fixture
def resend_key(monkeypatch):
    monkeypatch.setattr(config, "RESEND_API_KEY", "re_test")


def test_send_email_posts_to_resend(resend_key):
    with patch("feedloop.email.resend_client.requests.post", return_value=_response()) as post:
        reply = send_email(" a@example.com ", "Hi", "<p>x</p>")

    assert reply == {"id": "em_1"}
    kwargs = post.call_args.kwargs
    assert kwargs["json"]["to"] == ["a@example.com"]
    assert kwargs["headers"]["Authorization"] == "Bearer re_test"


def test_send_email_without_key():
    with pytest.raises(EmailSendError, match="RESEND_API_KEY"):
        send_email("a@example.com", "Hi", "<p>x</p>")


def test_send_email_rejects_empty_fields(resend_key):
    with pytest.raises(EmailSendError, match="subject is empty"):
        send_email("a@example.com", "  ", "<p>x</p>")


@pytest.mark.parametrize("status,match", [(403, "rejected sender"), (500, "Resend API error 500")])
def test_send_email_http_errors(resend_key, status, match):
    with patch("feedloop.email.resend_client.requests.post", return_value=_response(status, text="nope")):
        with pytest.raises(EmailSendError, match=match):
            send_email("a@example.com", "Hi", "<p>x</p>")


def test_send_email_network_error(resend_key):
    with patch("feedloop.email.resend_client.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(EmailSendError, match="request failed"):
            send_email("a@example.com", "Hi", "<p>x</p>")


def test_invitation_email_escapes_names():
    subject, body = invitation_email("<Shop>", "Eve & Co", "https://x/auth/register?invitation=t", pending=True)
    assert subject == "You've been invited to <Shop> on Feedloop"
    assert "&lt;Shop&gt;" in body
    assert "Eve &amp; Co" in body
    assert "Create your account to join" in body


def test_invitation_email_escapes_link():
    _, body = invitation_email("Shop", "Eve", "https://x/p?a=1&b=\"><script>", pending=False)
    assert "<script>" not in body
    assert "href=\"https://x/p?a=1&amp;b=&quot;&gt;&lt;script&gt;\"" in body


class TestPasswords:
    def test_round_trip(self):
        stored = hash_password("correct horse")
        assert stored.startswith("pbkdf2_sha256$")
        assert verify_password("correct horse", stored)
        assert not verify_password("wrong horse", stored)

    @pytest.mark.parametrize("stored", [None, "", "garbage", "md5$1$abc$def", "pbkdf2_sha256$x$abc$def"])
    def test_malformed_hashes(self, stored):
        assert not verify_password("whatever", stored)

    def test_length_limits(self):
        with pytest.raises(ValueError):
            hash_password("short")
        with pytest.raises(ValueError):
            hash_password("x" * 257)
