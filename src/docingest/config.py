"""Runtime settings loaded from ``DOCINGEST_*`` environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .ingest.errors import ConfigurationError, UnsupportedToolError
from .ingest.models import ExtractionTool

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "DOCINGEST_"
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _raw(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _str_from_env(environ: Mapping[str, str], name: str, default: str) -> str:
    value = _raw(environ, name)
    return default if value is None else value


def _int_from_env(environ: Mapping[str, str], name: str, default: int) -> int:
    value = _raw(environ, name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s%s: %s; using default %s", ENV_PREFIX, name, value, default)
        return default


def _float_from_env(environ: Mapping[str, str], name: str, default: float) -> float:
    value = _raw(environ, name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s%s: %s; using default %s", ENV_PREFIX, name, value, default)
        return default


def _bool_from_env(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = _raw(environ, name)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    LOGGER.warning("Invalid boolean for %s%s: %s; using default %s", ENV_PREFIX, name, value, default)
    return default


def _extensions_from_env(environ: Mapping[str, str], name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    value = _raw(environ, name)
    if value is None:
        return default
    extensions = []
    for item in value.split(","):
        item = item.strip().lower()
        if not item:
            continue
        extensions.append(item if item.startswith(".") else f".{item}")
    return tuple(extensions) or default


@dataclass(slots=True)
class Settings:
    """Every tunable of the API and the background worker."""

    max_chunk_size: int = 1024
    overlap_size: int = 128
    batch_size: int = 3
    flush_trailing_carry: bool = True

    extraction_tool: ExtractionTool = ExtractionTool.DIRECT_TEXT
    direct_text_backend: str = "pdftotext"

    ocr_languages: str = "vie+rus"
    ocr_dpi: int = 450
    ocr_oem: int = 3
    ocr_psm: int = 3
    ocr_preprocess: bool = True
    ocr_stagger_seconds: float = 0.1

    lock_ttl_seconds: int = 20 * 60
    poll_interval_seconds: float = 60.0
    pending_fetch_limit: int = 100

    work_dir: Path = field(default_factory=lambda: Path("data/work"))
    upload_dir: Path = field(default_factory=lambda: Path("data/uploads"))
    max_upload_bytes: int = 50 * 1024 * 1024
    allowed_extensions: Tuple[str, ...] = (".pdf",)

    vector_store_backend: str = "mock"
    chroma_persist_dir: Path = field(default_factory=lambda: Path("data/chroma"))
    collection_name: str = "documents"
    embedding_backend: str = "hash"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    lock_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    pending_store_backend: str = "json"
    pending_store_path: Path = field(default_factory=lambda: Path("data/pending.json"))

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.max_chunk_size <= 0:
            raise ConfigurationError("max_chunk_size must be a positive integer")
        if not 0 < self.overlap_size < self.max_chunk_size:
            raise ConfigurationError("overlap_size must be positive and smaller than max_chunk_size")
        if self.batch_size <= 0:
            raise ConfigurationError("batch_size must be a positive integer")
        if self.lock_ttl_seconds <= 0:
            raise ConfigurationError("lock_ttl_seconds must be a positive integer")
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError("poll_interval_seconds must be positive")
        if self.pending_fetch_limit <= 0:
            raise ConfigurationError("pending_fetch_limit must be a positive integer")
        if self.direct_text_backend not in {"pdftotext", "pdfminer"}:
            raise ConfigurationError(f"Unknown direct text backend: {self.direct_text_backend!r}")
        if self.vector_store_backend not in {"mock", "chroma"}:
            raise ConfigurationError(f"Unknown vector store backend: {self.vector_store_backend!r}")
        if self.embedding_backend not in {"hash", "sentence-transformers"}:
            raise ConfigurationError(f"Unknown embedding backend: {self.embedding_backend!r}")
        if self.lock_backend not in {"memory", "redis"}:
            raise ConfigurationError(f"Unknown lock backend: {self.lock_backend!r}")
        if self.pending_store_backend not in {"json", "memory"}:
            raise ConfigurationError(f"Unknown pending store backend: {self.pending_store_backend!r}")


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from the environment.

    Malformed numbers and booleans are logged and replaced by their default.
    Values that parse but break an invariant raise ``ConfigurationError``.
    """

    env = os.environ if environ is None else environ
    defaults = Settings()
    extraction_tool = defaults.extraction_tool
    tool_value = _raw(env, "EXTRACTION_TOOL")
    if tool_value:
        try:
            extraction_tool = ExtractionTool.parse(tool_value)
        except UnsupportedToolError as exc:
            raise ConfigurationError(f"Invalid {ENV_PREFIX}EXTRACTION_TOOL: {exc}") from exc

    return Settings(
        max_chunk_size=_int_from_env(env, "MAX_CHUNK_SIZE", defaults.max_chunk_size),
        overlap_size=_int_from_env(env, "OVERLAP_SIZE", defaults.overlap_size),
        batch_size=_int_from_env(env, "BATCH_SIZE", defaults.batch_size),
        flush_trailing_carry=_bool_from_env(env, "FLUSH_TRAILING_CARRY", defaults.flush_trailing_carry),
        extraction_tool=extraction_tool,
        direct_text_backend=_str_from_env(env, "DIRECT_TEXT_BACKEND", defaults.direct_text_backend).lower(),
        ocr_languages=_str_from_env(env, "OCR_LANGUAGES", defaults.ocr_languages),
        ocr_dpi=_int_from_env(env, "OCR_DPI", defaults.ocr_dpi),
        ocr_oem=_int_from_env(env, "OCR_OEM", defaults.ocr_oem),
        ocr_psm=_int_from_env(env, "OCR_PSM", defaults.ocr_psm),
        ocr_preprocess=_bool_from_env(env, "OCR_PREPROCESS", defaults.ocr_preprocess),
        ocr_stagger_seconds=_float_from_env(env, "OCR_STAGGER_SECONDS", defaults.ocr_stagger_seconds),
        lock_ttl_seconds=_int_from_env(env, "LOCK_TTL_SECONDS", defaults.lock_ttl_seconds),
        poll_interval_seconds=_float_from_env(env, "POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds),
        pending_fetch_limit=_int_from_env(env, "PENDING_FETCH_LIMIT", defaults.pending_fetch_limit),
        work_dir=Path(_str_from_env(env, "WORK_DIR", str(defaults.work_dir))),
        upload_dir=Path(_str_from_env(env, "UPLOAD_DIR", str(defaults.upload_dir))),
        max_upload_bytes=_int_from_env(env, "MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
        allowed_extensions=_extensions_from_env(env, "ALLOWED_EXTENSIONS", defaults.allowed_extensions),
        vector_store_backend=_str_from_env(env, "VECTOR_STORE", defaults.vector_store_backend).lower(),
        chroma_persist_dir=Path(_str_from_env(env, "CHROMA_PERSIST_DIR", str(defaults.chroma_persist_dir))),
        collection_name=_str_from_env(env, "COLLECTION_NAME", defaults.collection_name),
        embedding_backend=_str_from_env(env, "EMBEDDING_BACKEND", defaults.embedding_backend).lower(),
        embedding_model=_str_from_env(env, "EMBEDDING_MODEL", defaults.embedding_model),
        lock_backend=_str_from_env(env, "LOCK_BACKEND", defaults.lock_backend).lower(),
        redis_url=_str_from_env(env, "REDIS_URL", defaults.redis_url),
        pending_store_backend=_str_from_env(env, "PENDING_STORE", defaults.pending_store_backend).lower(),
        pending_store_path=Path(_str_from_env(env, "PENDING_STORE_PATH", str(defaults.pending_store_path))),
        log_dir=Path(_str_from_env(env, "LOG_DIR", str(defaults.log_dir))),
        log_level=_str_from_env(env, "LOG_LEVEL", defaults.log_level).upper(),
    )


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings."""

    return load_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
