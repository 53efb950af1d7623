"""Selection, initialization and periodic saving of the process-wide store."""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta

from .common import StoreError
from .memory import MemoryStore
from .models import Store
from .sql import SQLStore

logger = logging.getLogger(__name__)

AUTO_SAVE_INTERVAL = timedelta(minutes=7)
"""How often a file-backed in-memory store is saved."""


class StorageType(str, enum.Enum):
    """Kind of store."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRES = "postgres"


@dataclass
class StorageConfig:
    """Configuration of the store.

    ``file`` is the path used for persistence; when blank, an in-memory store is not
    persisted. ``type`` selects the store; when unset, the in-memory store is used.
    """

    file: str = ""
    type: StorageType | None = None

    def __post_init__(self) -> None:
        if isinstance(self.type, str) and not isinstance(self.type, StorageType):
            self.type = StorageType(self.type) if self.type else None


_state_lock = threading.RLock()
_provider: Store | None = None
_initialized = False
_stop_event: threading.Event | None = None


def get() -> Store | None:
    """Return the store, initializing a default one if none was initialized yet."""
    with _state_lock:
        if not _initialized:
            logger.info("Provider requested before it was initialized, automatically initializing")
            try:
                initialize(None)
            except (StoreError, ValueError, OSError) as exc:
                raise RuntimeError(f"failed to automatically initialize store: {exc}") from exc
        return _provider


def initialize(cfg: StorageConfig | None = None) -> None:
    """Create the store described by ``cfg``, stopping any running auto-save job."""
    global _provider, _initialized, _stop_event
    with _state_lock:
        _initialized = True
        if _stop_event is not None:
            _stop_event.set()
        if cfg is None:
            cfg = StorageConfig()
        type_name = cfg.type.value if cfg.type is not None else ""
        if not cfg.file and cfg.type is not StorageType.POSTGRES:
            logger.info("Creating storage provider with type=%s and file=%s", type_name, cfg.file)
        else:
            logger.info("Creating storage provider with type=%s", type_name)
        _stop_event = threading.Event()
        _provider = None
        if cfg.type in (StorageType.SQLITE, StorageType.POSTGRES):
            _provider = SQLStore(cfg.type.value, cfg.file)
        elif cfg.file:
            provider = MemoryStore(cfg.file)
            _provider = provider
            threading.Thread(
                target=auto_save_store,
                args=(provider, AUTO_SAVE_INTERVAL, _stop_event),
                name="storage-auto-save",
                daemon=True,
            ).start()
        else:
            _provider = MemoryStore()


def auto_save_store(
    provider: Store, interval: timedelta | float, stop_event: threading.Event
) -> None:
    """Save ``provider`` every ``interval`` until ``stop_event`` is set."""
    seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
    while True:
        if stop_event.wait(seconds):
            logger.info("Stopping active auto-save job")
            return
        logger.info("Saving")
        try:
            provider.save()
        except (StoreError, OSError) as exc:
            logger.error("Save failed: %s", exc)