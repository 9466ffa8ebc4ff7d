from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api_routers.v1 import api_router
from app.features.health.routes.health import router as health_router
from app.platform.config import settings
from app.platform.db.session import Database
from app.platform.exceptions import add_exception_handlers
from app.platform.logger import configure_logging, get_logger

configure_logging()
logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = Database(settings.DATABASE_URL)
    database.connect()
    if settings.DB_CREATE_ALL:
        await database.create_all()
    app.state.database = database

    if not settings.ACCESS_TOKEN_SECRET or not settings.REFRESH_TOKEN_SECRET:
        logger.error("Token secrets are not configured; token issuance will fail")

    try:
        yield
    finally:
        await database.disconnect()


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} Auth API",
        description="Email OTP verification and session tokens",
        version="1.0.0",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    @app.get("/", tags=["Info"])
    def root():
        return {
            "app_name": settings.APP_NAME,
            "version": "1.0.0",
            "docs_url": "/docs",
            "api_base": "/api/v1",
        }

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    add_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()
