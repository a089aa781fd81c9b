"""
Device Identity
===============

Stable device id persisted in a small JSON key-value preferences file.

The id is generated once (random UUID4) on first run and reused afterwards,
so topics, unique_ids and the Home Assistant device survive restarts.

Usage:
    store = PreferencesStore("~/.config/odbridge/preferences.json")
    device_id = load_or_create_device_id(store)
"""
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import IdentityStoreError

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device_id"


class PreferencesStore:
    """JSON key-value file. Writes are atomic (temp file + os.replace)."""

    def __init__(self, path: str):
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise IdentityStoreError(f"Cannot read preferences {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise IdentityStoreError(f"Preferences {self.path} must hold a JSON object")
        return data

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".prefs-", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise IdentityStoreError(f"Cannot write preferences {self.path}: {e}") from e


def load_or_create_device_id(store: PreferencesStore, key: str = DEVICE_ID_KEY) -> str:
    """
    Return the persisted device id, generating and saving one if missing.

    Raises:
        IdentityStoreError: If the preferences file can't be read or written
    """
    device_id = store.get(key)
    if isinstance(device_id, str) and device_id:
        logger.debug(
            f"Device id loaded: {device_id}",
            extra={"component": "identity", "event": "device_id_loaded", "device_id": device_id}
        )
        return device_id

    device_id = str(uuid.uuid4())
    store.set(key, device_id)
    logger.info(
        f"🆔 New device id generated: {device_id}",
        extra={
            "component": "identity",
            "event": "device_id_created",
            "device_id": device_id,
            "store_path": str(store.path),
        }
    )
    return device_id


def resolve_device_id(configured: Optional[str], store_path: str) -> str:
    """Configured id wins; otherwise the persisted one."""
    if configured:
        return configured
    return load_or_create_device_id(PreferencesStore(store_path))
