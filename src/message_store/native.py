"""Native per-account file store reached through the storage bridge.

The store speaks the callback convention of the host process: every call
takes an ``options`` mapping carrying ``dataPath`` and a ``callback(error,
data)`` that is invoked exactly once. A missing key yields ``{}`` and an empty
directory yields ``[]`` rather than an error; the bridge normalizes both.

Layout:
    <dataPath>/
      <quoted key>.json      # one JSON document per key
"""
from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, unquote

Callback = Callable[..., None]


# -----------------------------
# Helpers
# -----------------------------
def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def _key_filename(key: str) -> str:
    # Keys are contact uris ("alice@example.com"); keep them reversible.
    return quote(str(key), safe="@.-_") + ".json"


# -----------------------------
# FileStore
# -----------------------------
class FileStore:
    """JSON file-per-key store with a callback API.

    Backwards compatible with the host bridge contract:
        - get_data_path() -> str
        - get(key, options, callback)
        - set(key, value, options, callback)
        - remove(key, options, callback)
        - clear(options, callback)
        - keys(options, callback)
    """

    def __init__(self, data_path: str) -> None:
        self.root = Path(data_path)
        self._lock = threading.RLock()

    def get_data_path(self) -> str:
        return str(self.root)

    # --------- paths ----------
    def _dir(self, options: Optional[Dict[str, Any]]) -> Path:
        data_path = (options or {}).get("dataPath")
        return Path(data_path) if data_path else self.root

    def _path(self, key: str, options: Optional[Dict[str, Any]]) -> Path:
        return self._dir(options) / _key_filename(key)

    # --------- callback API ----------
    def get(self, key: str, options: Optional[Dict[str, Any]], callback: Callback) -> None:
        path = self._path(key, options)
        try:
            with self._lock:
                if not path.exists():
                    data: Any = {}
                else:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
        except (OSError, ValueError) as e:
            callback(e)
            return
        callback(None, data)

    def set(self, key: str, value: Any, options: Optional[Dict[str, Any]], callback: Callback) -> None:
        try:
            text = json.dumps(value, ensure_ascii=False)
            with self._lock:
                _atomic_write_text(self._path(key, options), text)
        except (OSError, TypeError, ValueError) as e:
            callback(e)
            return
        callback(None)

    def remove(self, key: str, options: Optional[Dict[str, Any]], callback: Callback) -> None:
        try:
            with self._lock:
                self._path(key, options).unlink(missing_ok=True)
        except OSError as e:
            callback(e)
            return
        callback(None)

    def clear(self, options: Optional[Dict[str, Any]], callback: Callback) -> None:
        try:
            with self._lock:
                directory = self._dir(options)
                if directory.exists():
                    for p in directory.glob("*.json"):
                        p.unlink(missing_ok=True)
        except OSError as e:
            callback(e)
            return
        callback(None)

    def keys(self, options: Optional[Dict[str, Any]], callback: Callback) -> None:
        try:
            with self._lock:
                directory = self._dir(options)
                out: List[str] = []
                if directory.exists():
                    out = sorted(unquote(p.stem) for p in directory.glob("*.json"))
        except OSError as e:
            callback(e)
            return
        callback(None, out)
