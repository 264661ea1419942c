import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.errors import OTAError
from app.db.session import init_db
from app.routers import ota_router
from app.services.ota.runtime import OTARuntime

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    runtime = OTARuntime.from_settings(settings)
    runtime.start()
    app.state.ota_runtime = runtime

    yield

    logger.info("Shutting down")
    runtime.stop()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Firmware OTA release and rollout service",
    lifespan=lifespan,
)


@app.exception_handler(OTAError)
async def ota_exception_handler(request: Request, exc: OTAError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(ota_router.router, prefix="/api/ota", tags=["OTA"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
