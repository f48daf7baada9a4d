"""Lifecycle owner for the active storage backend."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from .backends import BridgedStore, DirectStore, StorageBackend
from .native import FileStore

logger = logging.getLogger(__name__)


class StorageService:
    """Holds at most one active backend between ``initialize`` and ``close``.

    Parameters
    ----------
    data_dir : str
        Root directory for the SQLite database of the direct store and for
        the default native file store of the bridged variant.
    db_name : str
        File name (without suffix) of the direct store database.
    """

    def __init__(self, data_dir: str = "data", *, db_name: str = "messages") -> None:
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        self._backend: Optional[StorageBackend] = None

    @property
    def backend(self) -> Optional[StorageBackend]:
        return self._backend

    @property
    def is_open(self) -> bool:
        return self._backend is not None

    def initialize(
        self,
        account: str,
        native_store: Any = None,
        use_bridged: bool = False,
    ) -> StorageBackend:
        """Create the backend for ``account``; no-op if one is already active."""
        logger.debug("Message store init")
        if self._backend is not None:
            return self._backend

        if not use_bridged:
            path = self.data_dir / f"{self.db_name}.sqlite3"
            self._backend = DirectStore(path, account=account)
        else:
            store = native_store if native_store is not None else FileStore(str(self.data_dir))
            bridged = BridgedStore(store, account=account)
            bridged.init(account)
            self._backend = bridged
        logger.info("Opened %s message store for %s", self._backend.kind, account)
        return self._backend

    def close(self) -> None:
        """Drop the active backend; later operations see an empty store."""
        backend, self._backend = self._backend, None
        if backend is not None:
            backend.close()
            logger.info("Closed %s message store", backend.kind)
