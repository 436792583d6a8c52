# app/backend/main.py
import os
import logging
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlmodel import text

from app.backend.core.config import get_settings
from app.backend.core.logging_config import setup_logging
from app.db.session import get_engine

# 모델 모듈 임포트(테이블 등록 보장용)
from app.backend.models import user as _m_user  # noqa: F401

# 라우터
from app.backend.routers import auth, user

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="VidTube Backend",
    version=os.getenv("APP_VERSION", "0.1.0"),
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(auth.auth_router)
app.include_router(user.user_router)

# LocalMediaStore가 돌려주는 URL 서빙
if settings.media_base_url.startswith("/"):
    app.mount(
        settings.media_base_url,
        StaticFiles(directory=settings.media_root, check_dir=False),
        name="media",
    )


@app.get("/health")
def health_app():
    return {"ok": True}


@app.get("/health/db")
def health_db():
    # Migration is a deployment concern. Runtime only verifies DB connectivity.
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"ok": True}
    except Exception:
        logger.exception("database health check failed")
        raise HTTPException(status_code=500, detail="Database connection failed")
