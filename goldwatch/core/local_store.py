#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Local durable key -> JSON document store.

One file per key under a directory. Writes go to a temporary sibling first and
are moved into place, so a crash mid-write leaves the previous document intact.
"""
from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

log = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class StorageError(Exception):
    """Durable read/write failure (missing permissions, corruption, full disk)"""
    pass


class LocalStore:
    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        if not key or not _SAFE_KEY.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Optional[Any]:
        """
        Read a document

        Returns:
            Decoded JSON, or None when the key has never been written

        Raises:
            StorageError: If the file exists but cannot be read or decoded
        """
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {path}: {e}")

    def save(self, key: str, document: Any) -> None:
        """Overwrite the document stored under `key`."""
        path = self._path(key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(document, f, separators=(",", ":"))
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                log.debug(f"Could not remove {tmp}")
            raise StorageError(f"Failed to write {path}: {e}")
        log.debug(f"Stored {key} -> {path}")

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}")
