"""
Token Store - local persistence of the active subscription record

The record is spread over several string keys in a namespaced key-value
store, the way the web client keeps it in localStorage. Writes are not
transactional: an interrupted ``store`` can leave a mix of old and new
fields, which the entitlement service reports as an invalid record.

Backends:
- MemoryKeyValueStore: process-local dict (tests, ephemeral sessions)
- JsonFileKeyValueStore: a JSON file in the app data directory
"""

import json
import logging
import os
import stat
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from subscription.errors import StoreError
from subscription.models import SubscriptionRecord

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """String key-value storage with localStorage semantics"""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value, or None when the key is missing"""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key; missing keys are ignored"""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """In-memory backend"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())


class JsonFileKeyValueStore(KeyValueStore):
    """
    File-backed backend.

    Every mutation rewrites the whole file, so each individual key write is
    durable but a multi-key update is not atomic. Another process writing
    the same file wins on its last write.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Could not read subscription store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"Subscription store {self.path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"Could not write subscription store {self.path}: {e}") from e
        self._set_secure_file_permissions()

    def _set_secure_file_permissions(self) -> None:
        """Owner read/write only (no-op where chmod is unsupported)"""
        try:
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            logger.debug(f"Could not restrict permissions on {self.path}: {e}")

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> List[str]:
        return list(self._read().keys())


class TokenStore:
    """
    Reads and writes the subscription record under one namespace.

    Key layout for namespace ``subscription``::

        subscription_token
        subscription_expiry
        subscription_plan
        subscription_created_at
        subscription_validation
        subscription_mobile_code
    """

    FIELDS = {
        "token": "token",
        "expires_at": "expiry",
        "plan": "plan",
        "created_at": "created_at",
        "validation_marker": "validation",
        "mobile_access_code": "mobile_code",
    }

    def __init__(self, backend: KeyValueStore, namespace: str = "subscription"):
        self.backend = backend
        self.namespace = namespace

    def key_for(self, field_name: str) -> str:
        return f"{self.namespace}_{self.FIELDS[field_name]}"

    @property
    def known_keys(self) -> List[str]:
        return [self.key_for(name) for name in self.FIELDS]

    def store(self, record: SubscriptionRecord) -> None:
        """Write every field, overwriting whatever the namespace held"""
        for field_name in self.FIELDS:
            value = getattr(record, field_name)
            key = self.key_for(field_name)
            if value is None:
                self.backend.remove(key)
            else:
                self.backend.set(key, value)
        logger.debug(f"Stored subscription record in namespace '{self.namespace}'")

    def load(self) -> Optional[SubscriptionRecord]:
        """Read the record back; None when the token key is absent"""
        token = self.backend.get(self.key_for("token"))
        if token is None:
            return None
        return SubscriptionRecord(
            token=token,
            plan=self.backend.get(self.key_for("plan")),
            expires_at=self.backend.get(self.key_for("expires_at")),
            created_at=self.backend.get(self.key_for("created_at")),
            validation_marker=self.backend.get(self.key_for("validation_marker")),
            mobile_access_code=self.backend.get(self.key_for("mobile_access_code")),
        )

    def clear(self) -> None:
        """Remove every key this store knows about"""
        for key in self.known_keys:
            self.backend.remove(key)
        logger.debug(f"Cleared subscription namespace '{self.namespace}'")
