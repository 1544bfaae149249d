# src/mindflow_console/session_store.py

import json
import logging
import shutil
import tempfile
import typing
from pathlib import Path

from .session_data import PersistedSessionRecord

logger = logging.getLogger(__name__)

# Storage keys, one per persisted field
API_BASE_KEY = "mindflow-api-base"
TOKEN_KEY = "mindflow-token"
TOKEN_API_BASE_KEY = "mindflow-token-api-base"

_FIELD_KEYS = {
    "selected_base_url": API_BASE_KEY,
    "token": TOKEN_KEY,
    "token_owner_base_url": TOKEN_API_BASE_KEY,
}


class PersistedSessionStore(typing.Protocol):
    def load(self) -> PersistedSessionRecord: ...

    def save(self, record: PersistedSessionRecord) -> None: ...

    def clear_token(self) -> None: ...


class _KeyValueSessionStore:
    """
    Maps the session record onto three independent string keys.
    Subclasses provide _read_all/_write_all; every save is applied before it returns.
    """

    def _read_all(self) -> typing.Dict[str, str]:
        raise NotImplementedError

    def _write_all(self, data: typing.Dict[str, str]) -> None:
        raise NotImplementedError

    def load(self) -> PersistedSessionRecord:
        data = self._read_all()
        return PersistedSessionRecord(
            **{field: data.get(key) or None for field, key in _FIELD_KEYS.items()}
        )

    def save(self, record: PersistedSessionRecord) -> None:
        data: typing.Dict[str, str] = {}
        for field, key in _FIELD_KEYS.items():
            value = getattr(record, field)
            if value:
                data[key] = value
        self._write_all(data)

    def clear_token(self) -> None:
        data = self._read_all()
        data.pop(TOKEN_KEY, None)
        data.pop(TOKEN_API_BASE_KEY, None)
        self._write_all(data)


class InMemorySessionStore(_KeyValueSessionStore):
    def __init__(self, initial: typing.Optional[typing.Dict[str, str]] = None):
        self._data: typing.Dict[str, str] = dict(initial or {})

    @property
    def data(self) -> typing.Dict[str, str]:
        return dict(self._data)

    def _read_all(self) -> typing.Dict[str, str]:
        return dict(self._data)

    def _write_all(self, data: typing.Dict[str, str]) -> None:
        self._data = dict(data)


class JsonFileSessionStore(_KeyValueSessionStore):
    """Session store backed by a small JSON file so the session survives restarts."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_all(self) -> typing.Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring session file %s: expected a JSON object", self.path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: typing.Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w", dir=self.path.parent, delete=False, encoding="utf-8"
        ) as tf:
            json.dump(data, tf, indent=2)
            temp_path = Path(tf.name)
        try:
            shutil.move(str(temp_path), str(self.path))
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise


def build_session_store(session_file: typing.Optional[Path]) -> PersistedSessionStore:
    if session_file:
        logger.info("Persisting session to %s", session_file)
        return JsonFileSessionStore(session_file)
    logger.info("Session file not configured; session lives in memory only")
    return InMemorySessionStore()
