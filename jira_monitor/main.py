import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from jira_monitor.api.v1.endpoints import auth, monitor
from jira_monitor.core.config import Settings, settings as default_settings
from jira_monitor.core.exceptions import JiraMonitorError
from jira_monitor.core.logging import setup_logging
from jira_monitor.db import session as db_session
from jira_monitor.services.container import build_services

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Construit l'application. ``transport`` permet aux tests de remplacer
    le réseau par un httpx.MockTransport.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Fonction exécutée au démarrage (avant le yield)
        et à l'arrêt (après le yield) de l'application.
        """
        setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
        logger.info("Démarrage de %s", settings.PROJECT_NAME)

        if settings.DATABASE_URL == default_settings.DATABASE_URL:
            engine = db_session.engine
        else:
            engine = db_session.build_engine(settings.DATABASE_URL)
        db_session.init_db(engine)
        logger.info("Tables synchronisées")

        http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport)
        services = build_services(settings, engine, http_client)
        app.state.services = services
        if settings.SCHEDULER_AUTOSTART:
            services.scheduler.start()
        try:
            yield
        finally:
            await services.scheduler.stop()
            await http_client.aclose()
            logger.info("Arrêt de %s", settings.PROJECT_NAME)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware Session : porte uniquement le state OAuth en attente
    app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(JiraMonitorError)
    async def jira_monitor_error_handler(request: Request, exc: JiraMonitorError):
        logger.warning("%s sur %s : %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(monitor.router, prefix="/api/v1/monitor", tags=["Monitor"])

    @app.get("/")
    def read_root():
        return {"status": "online", "message": f"{settings.PROJECT_NAME} is running"}

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app


app = create_app()
