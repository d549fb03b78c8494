from contextlib import asynccontextmanager
import os
from pathlib import Path
from fastapi import FastAPI
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from loguru import logger
from app.api.errors import register_error_handlers
from app.api.v1.router import api_router
from app.core.config import settings
from app.core.logging import configure_logging
from app.db.init_db import init_db

configure_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if not settings.AUTOMATION_WEBHOOK_URL:
        logger.warning('AUTOMATION_WEBHOOK_URL is not set, chat requests will be rejected')
    yield

app = FastAPI(title=settings.PROJECT_NAME, debug=settings.DEBUG, lifespan=lifespan)

allow_origins = settings.CORS_ORIGINS
allow_credentials = '*' not in allow_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=['*'],
    allow_headers=['*'],
)

register_error_handlers(app)
app.include_router(api_router)


def _get_frontend_dist() -> Path:
    env_path = os.getenv("FRONTEND_DIST")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path(__file__).resolve().parents[1] / "dist"


frontend_dist = _get_frontend_dist()
index_file = frontend_dist / "index.html"
api_prefix = settings.API_V1_PREFIX.strip("/")

if frontend_dist.exists() and index_file.exists():

    @app.get("/", include_in_schema=False)
    def serve_frontend_index():
        return FileResponse(index_file)

    @app.get("/{full_path:path}", include_in_schema=False)
    def serve_frontend_assets(full_path: str):
        if api_prefix and full_path.startswith(f"{api_prefix}/"):
            raise HTTPException(status_code=404)
        candidate = (frontend_dist / full_path).resolve()
        if candidate.is_file() and frontend_dist in candidate.parents:
            return FileResponse(candidate)
        return FileResponse(index_file)


def run() -> None:
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
