"""Note store factory.

Centralizes creation of concrete ``NoteStore`` backends so the search core
doesn't depend on implementation details.
"""

from enum import Enum
from typing import Any
import structlog

from libs.common.config import NoteStoreConfig
from .base import NoteStore
from .pgsql import PgNoteStore
from .rest import RestNoteStore

logger = structlog.get_logger("note_store.factory")


class NoteStoreType(Enum):
    """Supported note store backends."""
    REST = "rest"
    POSTGRES = "postgres"


def create_note_store(config: NoteStoreConfig, **kwargs: Any) -> NoteStore:
    """Create the note store selected by ``tm_note_store_backend``.

    Parameters
    - config: ``NoteStoreConfig`` (or a subclass such as ``SearchConfig``)
    - kwargs: Implementation-specific overrides (e.g. ``client`` or ``user_id``)
    """
    try:
        store_type = NoteStoreType(config.tm_note_store_backend)
    except ValueError:
        raise ValueError(f"Unsupported note store backend: {config.tm_note_store_backend}")

    if store_type == NoteStoreType.REST:
        store = RestNoteStore(
            base_url=config.tm_note_store_url,
            api_key=config.tm_note_store_api_key,
            access_token=config.tm_note_store_access_token,
            timeout=config.tm_note_store_timeout_seconds,
            page_size=config.tm_lexical_page_size,
            **kwargs
        )
    else:
        if not config.tm_note_store_dsn:
            raise ValueError("TM_NOTE_STORE_DSN is required for the postgres backend")
        store = PgNoteStore(
            dsn=config.tm_note_store_dsn,
            pool_size=config.tm_note_store_pool_size,
            command_timeout=config.tm_note_store_timeout_seconds,
            page_size=config.tm_lexical_page_size,
            vector_dimension=getattr(config, "tm_embedding_dimension", None),
            **kwargs
        )

    logger.info("Created note store", backend=store_type.value)
    return store
