"""Sludge study FastAPI application."""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import pages, router
from app.config import Settings, settings as default_settings
from app.services import build_study

logger = logging.getLogger("sludge")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Rebuild the session index from the logs before serving requests."""
    study = app.state.study
    try:
        study.index.load(study.store)
    except OSError:
        logger.exception("Could not load session index from %s", study.store.data_dir)
        raise
    logger.info("Loaded %d sessions from %s", len(study.index), study.store.data_dir)
    yield


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    if settings.debug:
        logging.basicConfig(level=logging.DEBUG)

    app = FastAPI(
        title=settings.app_name,
        description="Sludge permit-application study: sessions, behavioral events, exports and statistics.",
        version="0.1.0",
        lifespan=lifespan,
        swagger_ui_parameters={
            "docExpansion": "list",
            "defaultModelsExpandDepth": -1,
            "filter": True,
            "displayRequestDuration": False,
        },
    )
    app.state.study = build_study(settings)

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    app.include_router(pages)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=default_settings.debug)
