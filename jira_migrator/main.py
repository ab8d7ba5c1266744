from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jira_migrator.core.config import settings
from jira_migrator.core.exceptions import MigratorException
from jira_migrator.core.logging import setup_logging
from jira_migrator.db.session import SessionLocal
from jira_migrator.routers import imports
from jira_migrator.services.issues_import.registry import ImportRegistry
from jira_migrator.services.storage import FileStorage, LocalFileStorage


def create_app(registry: ImportRegistry | None = None, storage: FileStorage | None = None) -> FastAPI:
    setup_logging(settings.LOG_LEVEL)
    import_registry = registry or ImportRegistry(SessionLocal)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await import_registry.start()
        try:
            yield
        finally:
            await import_registry.stop()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.import_registry = import_registry
    app.state.file_storage = storage or LocalFileStorage()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(imports.router, prefix="/api/import/jira", tags=["import"])

    @app.exception_handler(MigratorException)
    async def handle_migrator_exception(_: Request, exc: MigratorException) -> JSONResponse:
        headers = exc.headers if getattr(exc, "headers", None) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    return app


app = create_app()
