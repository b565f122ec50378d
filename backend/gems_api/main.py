import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gems_api.api.routers import auth as auth_router
from gems_api.api.routers import images as images_router
from gems_api.core.config import get_settings
from gems_api.db.session import create_tables, dispose_engine, get_session_factory
from gems_api.services.images import ImageService
from gems_api.services.storage import B2StorageClient
from gems_api.tasks.runner import CleanupRunner


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.env == "local":
        await create_tables()

    storage = B2StorageClient(settings)
    runner = CleanupRunner()
    app.state.image_service = ImageService(
        storage,
        runner=runner,
        session_factory=get_session_factory(),
        settings=settings,
    )

    await runner.start()
    yield
    await runner.stop()
    await storage.close()
    await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(
        debug=settings.debug,
        title="Gems Directory API",
        lifespan=lifespan,
    )

    app.include_router(auth_router.router)
    app.include_router(images_router.router)

    @app.get("/health", tags=["health"])
    async def liveness() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
