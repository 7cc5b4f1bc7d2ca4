import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from timegate.core.approvals.router import router as approvals_router
from timegate.core.entries.router import router as entries_router
from timegate.core.invitations.router import router as invitations_router
from timegate.core.organisations.router import router as organisations_router
from timegate.core.projects.router import router as projects_router
from timegate.core.rbac.router import router as rbac_router
from timegate.core.timesheets.router import router as timesheets_router
from timegate.errors import DomainError
from timegate.logging_config import configure_logging
from timegate.settings import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.message})


def create_app() -> FastAPI:
    configure_logging(settings)
    app = FastAPI(
        title="Timegate API",
        version="0.1.0",
        docs_url="/docs" if settings.APP_DEBUG else None,
        redoc_url="/redoc" if settings.APP_DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.APP_DEBUG else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DomainError, domain_error_handler)

    app.include_router(rbac_router)
    app.include_router(organisations_router)
    app.include_router(projects_router)
    app.include_router(entries_router)
    app.include_router(timesheets_router)
    app.include_router(approvals_router)
    app.include_router(invitations_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
