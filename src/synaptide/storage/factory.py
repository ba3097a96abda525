"""Start-up selection of the storage backend."""

import logging

from ..config import StorageConfig
from ..errors import StorageUnavailable
from ..logging import JSONLLogger
from .base import Storage
from .memory import MemoryStorage
from .mongo import MongoStorage

logger = logging.getLogger(__name__)


async def open_storage(
    config: StorageConfig,
    event_logger: JSONLLogger | None = None,
) -> Storage:
    """Build and initialize the process-wide storage handle.

    This is the only place that chooses between backends. If MongoDB
    cannot be reached and fallback is enabled, the in-memory store is used
    for the rest of the process lifetime.

    Raises:
        StorageUnavailable: MongoDB is down and fallback is disabled.
    """
    if config.backend == "memory":
        storage: Storage = MemoryStorage()
        logger.info("Using in-memory storage (data is lost on restart)")
        if event_logger:
            event_logger.log_backend_selected(storage.backend)
        return storage

    try:
        storage = MongoStorage.from_config(config)
        await storage.init()
    except StorageUnavailable as e:
        if not config.fallback_to_memory:
            logger.error("MongoDB unavailable and fallback disabled: %s", e)
            raise
        logger.warning("MongoDB unavailable, falling back to in-memory storage: %s", e)
        storage = MemoryStorage()
        if event_logger:
            event_logger.log_backend_selected(storage.backend, fallback_reason=str(e))
        return storage

    if event_logger:
        event_logger.log_backend_selected(storage.backend)
    return storage
