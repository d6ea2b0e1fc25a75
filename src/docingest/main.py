import logging
from typing import Any, Callable, TypeVar

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from docingest.api.documents import router as documents_router
from docingest.config import get_settings
from docingest.logging_config import configure_logging
from docingest.telemetry import log_event
from docingest.vectorstore import VectorStoreUnavailableError, get_vector_store

_settings = get_settings()
configure_logging(_settings.log_dir, _settings.log_level)

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Document Ingestion API")
app.include_router(documents_router)


@app.on_event("startup")
async def _log_startup() -> None:
    settings = get_settings()
    log_event(
        LOGGER,
        "app.startup",
        details={
            "vector_store": settings.vector_store_backend,
            "embedding_backend": settings.embedding_backend,
            "extraction_tool": settings.extraction_tool.value,
            "upload_dir": str(settings.upload_dir),
        },
    )


T = TypeVar("T")


def _resolve_dependency(factory: Callable[[], T]) -> T:
    """Resolve a dependency while respecting FastAPI overrides."""

    override: Any | None = app.dependency_overrides.get(factory)
    resolved: Any = override if override is not None else factory
    return resolved() if callable(resolved) else resolved


@app.get("/healthz", response_class=PlainTextResponse)
def healthcheck() -> str:
    """Liveness probe used by container orchestrators."""
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse)
def readiness_probe() -> str:
    """Readiness probe that ensures the vector store answers."""

    try:
        store = _resolve_dependency(get_vector_store)
        store.ping()
    except VectorStoreUnavailableError as exc:
        LOGGER.warning("Readiness check failed: %s", exc)
        raise HTTPException(status_code=503, detail=f"vector_store_unavailable: {exc}") from exc
    return "ok"


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Run the API with uvicorn."""

    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":  # pragma: no cover - manual entry point
    serve()
