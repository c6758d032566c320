# src/fraudwatch_client/persistence.py

"""
Durable storage for the persisted session subset.

A store holds serialized sessions under a namespaced key, the way the
browser front-end kept them in localStorage. The Session Manager only sees
the SessionPersistence port (load/save/clear).
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from .session_data import PersistedSession

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    pass


class SessionPersistence(Protocol):
    def load(self) -> Optional[PersistedSession]:
        ...

    def save(self, session: PersistedSession) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemoryPersistence:
    """Keeps serialized sessions in a dict. Used in tests and when no storage path is configured."""

    def __init__(self, key: str = "auth-storage", storage: Optional[Dict[str, str]] = None) -> None:
        self.key = key
        self.storage: Dict[str, str] = storage if storage is not None else {}

    def load(self) -> Optional[PersistedSession]:
        raw = self.storage.get(self.key)
        if raw is None:
            return None
        return _decode(raw)

    def save(self, session: PersistedSession) -> None:
        self.storage[self.key] = session.model_dump_json()

    def clear(self) -> None:
        self.storage.pop(self.key, None)


class JsonFilePersistence:
    """
    Key-value JSON file: {"<key>": "<serialized session>", ...}.
    Other keys in the file are left untouched; writes go through a temp file
    and os.replace so a crash never leaves a half-written file.
    """

    def __init__(self, path: Path, key: str = "auth-storage") -> None:
        self.path = Path(path)
        self.key = key

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read session storage {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Session storage {self.path} does not hold a JSON object.")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".session-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Could not write session storage {self.path}: {e}") from e

    def load(self) -> Optional[PersistedSession]:
        raw = self._read_all().get(self.key)
        if raw is None:
            return None
        return _decode(raw)

    def save(self, session: PersistedSession) -> None:
        try:
            data = self._read_all()
        except PersistenceError:
            logger.warning("Session storage %s is unreadable; overwriting it.", self.path)
            data = {}
        data[self.key] = session.model_dump_json()
        self._write_all(data)

    def clear(self) -> None:
        try:
            data = self._read_all()
        except PersistenceError:
            logger.warning("Session storage %s is unreadable; resetting it.", self.path)
            self._write_all({})
            return
        if self.key not in data:
            return
        del data[self.key]
        self._write_all(data)


def _decode(raw: str) -> PersistedSession:
    try:
        return PersistedSession.model_validate_json(raw)
    except PydanticValidationError as e:
        raise PersistenceError(f"Persisted session is corrupt: {e.error_count()} validation error(s)") from e


def build_persistence(path: Optional[Path], key: str) -> SessionPersistence:
    if path is None:
        return InMemoryPersistence(key=key)
    return JsonFilePersistence(path, key=key)
