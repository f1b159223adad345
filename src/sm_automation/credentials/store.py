"""Credential store backends.

The secure storage of secrets at rest is owned by whatever backend is plugged
in here; the automation core only borrows a read-only copy per login run.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

import requests

from sm_automation.models.results import Credentials

if TYPE_CHECKING:
    from sm_automation.core.config import Config

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Abstract base for keyed credential stores."""

    read_only = False

    @abstractmethod
    def get(self, key: str) -> Credentials | None:
        """Return credentials for a key, or None if absent."""

    @abstractmethod
    def set(self, key: str, credentials: Credentials) -> None:
        """Store credentials under a key."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove credentials for a key (no-op if absent)."""

    def _normalize_key(self, key: str) -> str:
        return (key or "").strip().lower()


class MemoryCredentialStore(CredentialStore):
    """In-memory credential store (for testing/single-instance use)."""

    def __init__(self, initial: dict[str, Credentials] | None = None) -> None:
        self._items: dict[str, Credentials] = {}
        self._lock = threading.Lock()
        for key, creds in (initial or {}).items():
            self.set(key, creds)

    def get(self, key: str) -> Credentials | None:
        with self._lock:
            return self._items.get(self._normalize_key(key))

    def set(self, key: str, credentials: Credentials) -> None:
        with self._lock:
            self._items[self._normalize_key(key)] = credentials

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(self._normalize_key(key), None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._items)


class FileCredentialStore(CredentialStore):
    """JSON-file credential store.

    The file holds ``{key: {"email": ..., "password": ...}}`` and is written
    with owner-only permissions.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        logger.info(f"Using file credential store at: {self.path}")

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Failed to read credential file {self.path}: {type(e).__name__}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Credentials | None:
        with self._lock:
            data = self._read()
        return Credentials.from_mapping(data.get(self._normalize_key(key)))

    def set(self, key: str, credentials: Credentials) -> None:
        with self._lock:
            data = self._read()
            data[self._normalize_key(key)] = credentials.to_mapping()
            self._write(data)
        logger.debug(f"Stored credentials for {self._normalize_key(key)}")

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(self._normalize_key(key), None) is not None:
                self._write(data)


class EnvCredentialStore(CredentialStore):
    """Read-only store backed by ``<PREFIX>_<KEY>_EMAIL`` / ``_PASSWORD`` variables."""

    read_only = True

    def __init__(self, prefix: str = "TRAIL", environ: dict[str, str] | None = None) -> None:
        self.prefix = prefix.upper()
        self._environ = environ if environ is not None else os.environ

    def _var_name(self, key: str, suffix: str) -> str:
        safe = "".join(ch if ch.isalnum() else "_" for ch in key.strip().upper())
        return f"{self.prefix}_{safe}_{suffix}"

    def get(self, key: str) -> Credentials | None:
        identity = self._environ.get(self._var_name(key, "EMAIL"))
        secret = self._environ.get(self._var_name(key, "PASSWORD"))
        if identity and secret:
            return Credentials(identity=identity, secret=secret)
        return None

    def set(self, key: str, credentials: Credentials) -> None:
        raise NotImplementedError("Environment credentials are read-only")

    def delete(self, key: str) -> None:
        raise NotImplementedError("Environment credentials are read-only")


class SupabaseCredentialStore(CredentialStore):
    """Credentials kept as one JSON blob in the Supabase ``app_settings`` table.

    The row ``setting_key = 'trail_credentials'`` holds
    ``{"allerton": {"email": ..., "password": ...}, ...}`` as a JSON string.
    Reads that fail are logged and treated as "absent".
    """

    TABLE = "app_settings"
    SETTING_KEY = "trail_credentials"

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not url or not service_key:
            raise ValueError("Supabase URL and service role key are required")
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self._lock = threading.Lock()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/rest/v1/{self.TABLE}"

    def _load_all(self) -> dict[str, Any]:
        try:
            response = self.session.get(
                self.endpoint,
                params={"setting_key": f"eq.{self.SETTING_KEY}", "select": "setting_value"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            rows = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to load stored credentials: {type(e).__name__}")
            return {}
        except ValueError:
            logger.error("Stored credentials response was not JSON")
            return {}

        if not rows or not isinstance(rows, list):
            return {}
        raw = rows[0].get("setting_value")
        if isinstance(raw, dict):
            return raw
        try:
            data = json.loads(raw) if raw else {}
        except (TypeError, ValueError):
            logger.error("Invalid stored credentials payload")
            return {}
        return data if isinstance(data, dict) else {}

    def _save_all(self, data: dict[str, Any]) -> None:
        response = self.session.post(
            self.endpoint,
            params={"on_conflict": "setting_key"},
            headers={"Prefer": "resolution=merge-duplicates"},
            json={"setting_key": self.SETTING_KEY, "setting_value": json.dumps(data)},
            timeout=self.timeout,
        )
        response.raise_for_status()

    def get(self, key: str) -> Credentials | None:
        return Credentials.from_mapping(self._load_all().get(self._normalize_key(key)))

    def set(self, key: str, credentials: Credentials) -> None:
        with self._lock:
            data = self._load_all()
            data[self._normalize_key(key)] = credentials.to_mapping()
            self._save_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._load_all()
            if data.pop(self._normalize_key(key), None) is not None:
                self._save_all(data)


class ChainedCredentialStore(CredentialStore):
    """Consults several stores in order; first hit wins.

    Writes go to the first store that is not read-only.
    """

    def __init__(self, stores: list[CredentialStore]) -> None:
        if not stores:
            raise ValueError("ChainedCredentialStore needs at least one store")
        self.stores = stores

    @property
    def read_only(self) -> bool:  # type: ignore[override]
        return all(store.read_only for store in self.stores)

    def get(self, key: str) -> Credentials | None:
        for store in self.stores:
            creds = store.get(key)
            if creds is not None:
                return creds
        return None

    def _writable(self) -> CredentialStore:
        for store in self.stores:
            if not store.read_only:
                return store
        raise NotImplementedError("No writable credential store configured")

    def set(self, key: str, credentials: Credentials) -> None:
        self._writable().set(key, credentials)

    def delete(self, key: str) -> None:
        for store in self.stores:
            if not store.read_only:
                store.delete(key)


def credential_store_from_config(config: Config) -> CredentialStore:
    """Build the default chain: environment, then file, then Supabase.

    The file store is always present so that ``set`` has somewhere to write;
    it defaults to ``credentials.json`` under the profile root.
    """
    stores: list[CredentialStore] = [EnvCredentialStore()]
    file_path = config.credentials_file or str(Path(config.profile_root) / "credentials.json")
    stores.append(FileCredentialStore(file_path))
    if config.supabase_url and config.supabase_service_key:
        stores.append(SupabaseCredentialStore(config.supabase_url, config.supabase_service_key))
    return ChainedCredentialStore(stores)
