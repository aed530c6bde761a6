# feedloop/main.py

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from feedloop.core import config
from feedloop.core.errors import install_error_handlers
from feedloop.core.logging_config import configure_logging
from feedloop.core.ratelimit import limiter, rate_limit_exceeded_handler

from feedloop.db.session import SessionLocal
from feedloop.db.init_db import init_db
from feedloop.invitations.lifecycle import purge_expired_invitations

from feedloop.auth.routes import router as auth_router
from feedloop.projects.routes import router as projects_router
from feedloop.invitations.routes import router as invitations_router
from feedloop.reports.routes import router as reports_router
from feedloop.exports.routes import router as export_router
from feedloop.exports.templates import router as export_templates_router
from feedloop.uploads.routes import router as uploads_router
from feedloop.widget.routes import router as widget_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    if config.STORAGE_BACKEND == "local":
        Path(config.STORAGE_DIR).mkdir(parents=True, exist_ok=True)

    db = SessionLocal()
    try:
        result = purge_expired_invitations(db, grace_days=config.EXPIRED_INVITATION_GRACE_DAYS)
        if result["removed"]:
            logger.info("startup cleanup: removed %d expired invitation(s)", result["removed"])
    finally:
        db.close()

    yield


app = FastAPI(title="Feedloop API", lifespan=lifespan)


# FRONTEND_ORIGIN: "*" or a comma separated list of dashboard origins
raw_origins = config.FRONTEND_ORIGIN

if raw_origins == "*":
    allow_origins = ["*"]
    allow_credentials = False  # can't use credentials with "*"
else:
    allow_origins = [o.strip().rstrip("/") for o in raw_origins.split(",") if o.strip()]
    allow_credentials = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

install_error_handlers(app)


app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(invitations_router)
app.include_router(reports_router)
app.include_router(export_router)
app.include_router(export_templates_router)
app.include_router(uploads_router)
app.include_router(widget_router)

if config.STORAGE_BACKEND == "local":
    app.mount("/files", StaticFiles(directory=config.STORAGE_DIR, check_dir=False), name="files")


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/")
def root():
    return {"ok": True, "message": "Feedloop API is running", "docs": "/docs"}
