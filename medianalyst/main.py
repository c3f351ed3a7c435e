"""
MediAnalyst AI - FastAPI Application

Turns a brand and product name into a multi-stage explainer report:
ingredient pharmacology, a pathology diagram and a drug-mechanism
diagram, followed by a chat grounded in that report.

IMPORTANT: Generated content is informational only and is not
medical advice.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medianalyst.config import settings
from medianalyst.api.routes import router
from medianalyst.api.middleware import (
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
    setup_error_handlers,
    setup_rate_limiting
)
from medianalyst.utils.logger import get_logger, configure_logging

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create the history and report directories."""
    settings.history_path.parent.mkdir(parents=True, exist_ok=True)
    settings.output_path.mkdir(parents=True, exist_ok=True)
    configure_logging(
        log_level=settings.log_level,
        json_format=not settings.debug
    )

    logger.info(
        "Starting MediAnalyst",
        version=settings.app_version,
        debug=settings.debug,
        history=str(settings.history_path),
        reports=str(settings.output_path)
    )

    yield

    logger.info("Shutting down MediAnalyst")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    app = FastAPI(
        title=settings.app_name,
        description="""
## MediAnalyst AI - Product Explainer Wizard

Search a medicine by brand and product name, review the facts found,
then receive an ingredient analysis, a pathology diagram and a
drug-mechanism diagram, and ask follow-up questions.

### ⚠️ Important Disclaimer

All content is generated by an AI model and may be wrong. It is not
medical advice and does not replace a doctor or pharmacist.

### Wizard Flow

| Endpoint | Method | Description |
|----------|--------|-------------|
| `/runs` | POST | Start a run |
| `/runs/{id}/search` | POST | Search the product |
| `/runs/{id}/product` | PATCH | Edit product facts |
| `/runs/{id}/confirm-product` | POST | Run the three analyses |
| `/runs/{id}/confirm-report` | POST | Open chat, save to history |
| `/runs/{id}/chat` | POST | Ask a question |
| `/runs/{id}/report` | GET | Download HTML report |
| `/history` | GET | Saved analyses |
| `/edit-image` | POST | Edit a product image |
        """,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc" if settings.debug else None,
    )

    # Catches anything the exception handlers left unhandled
    app.add_middleware(ErrorHandlingMiddleware)

    # Request logging
    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_error_handlers(app)
    setup_rate_limiting(app)

    app.include_router(router, tags=["API"])

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn
    uvicorn.run(
        "medianalyst.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )


if __name__ == "__main__":
    run()
