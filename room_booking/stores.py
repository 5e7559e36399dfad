from __future__ import annotations

from datetime import datetime
import json
import logging
from pathlib import Path
import shutil
import threading
from typing import Any, Callable, Mapping, TypeVar

import redis
import yaml

from .errors import PersistenceFailure, StoreUnavailable
from .models import CredentialRecord, ReservationRecord

logger = logging.getLogger(__name__)

RESERVATION_PREFIX = "reservation:"
USER_PREFIX = "user:"
LATEST_USER_KEY = "latest_user"

T = TypeVar("T")


class ReservationStore:
    """Key-value persistence for reservations and the calendar owner's credentials.

    Listing by date is a full scan with a filter; there is no secondary index.
    """

    name = "abstract"

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        raise NotImplementedError

    def get_reservation_for_write(self, reservation_id: str) -> ReservationRecord | None:
        """Load a record that is about to be changed or deleted."""
        return self.get_reservation(reservation_id)

    def list_reservations(self) -> list[ReservationRecord]:
        raise NotImplementedError

    def list_reservations_by_date(self, date: str) -> list[ReservationRecord]:
        return [record for record in self.list_reservations() if record.date == date]

    def put_reservation(self, record: ReservationRecord) -> None:
        raise NotImplementedError

    def delete_reservation(self, reservation_id: str) -> bool:
        raise NotImplementedError

    def get_credential(self, email: str) -> CredentialRecord | None:
        raise NotImplementedError

    def put_credential(self, record: CredentialRecord) -> None:
        raise NotImplementedError

    def count_credentials(self) -> int:
        raise NotImplementedError

    def get_latest_identity(self) -> str | None:
        raise NotImplementedError

    def set_latest_identity(self, email: str) -> None:
        raise NotImplementedError

    def clear_latest_identity(self) -> None:
        raise NotImplementedError

    def describe(self) -> dict[str, Any]:
        try:
            return {
                "backend": self.name,
                "healthy": True,
                "reservations": len(self.list_reservations()),
                "users": self.count_credentials(),
            }
        except StoreUnavailable as error:
            return {"backend": self.name, "healthy": False, "error": str(error)}


class MemoryStore(ReservationStore):
    """Volatile in-process store. Records are kept serialized so callers never share state."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reservations: dict[str, dict[str, Any]] = {}
        self._users: dict[str, dict[str, Any]] = {}
        self._latest_user: str | None = None

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        with self._lock:
            row = self._reservations.get(reservation_id)
        return _decode_reservation(row, source=self.name) if row is not None else None

    def list_reservations(self) -> list[ReservationRecord]:
        with self._lock:
            rows = list(self._reservations.values())
        return _decode_reservations(rows, source=self.name)

    def put_reservation(self, record: ReservationRecord) -> None:
        with self._lock:
            self._reservations[record.reservation_id] = record.to_dict()

    def delete_reservation(self, reservation_id: str) -> bool:
        with self._lock:
            return self._reservations.pop(reservation_id, None) is not None

    def get_credential(self, email: str) -> CredentialRecord | None:
        with self._lock:
            row = self._users.get(email)
        return _decode_credential(row, source=self.name) if row is not None else None

    def put_credential(self, record: CredentialRecord) -> None:
        with self._lock:
            self._users[record.email] = record.to_dict()

    def count_credentials(self) -> int:
        with self._lock:
            return len(self._users)

    def get_latest_identity(self) -> str | None:
        with self._lock:
            return self._latest_user

    def set_latest_identity(self, email: str) -> None:
        with self._lock:
            self._latest_user = email

    def clear_latest_identity(self) -> None:
        with self._lock:
            self._latest_user = None


class RedisStore(ReservationStore):
    name = "redis"

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 5.0) -> "RedisStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    def _call(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except redis.exceptions.RedisError as error:
            raise StoreUnavailable(f"Redis call failed: {error}") from error

    def ping(self) -> bool:
        return bool(self._call(self.client.ping))

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        raw = self._call(lambda: self.client.get(RESERVATION_PREFIX + reservation_id))
        if raw is None:
            return None
        return _decode_reservation(_load_json(raw, RESERVATION_PREFIX + reservation_id), source=self.name)

    def list_reservations(self) -> list[ReservationRecord]:
        keys = self._call(lambda: list(self.client.scan_iter(match=RESERVATION_PREFIX + "*")))
        if not keys:
            return []
        values = self._call(lambda: self.client.mget(keys))
        rows = [_load_json(raw, key) for key, raw in zip(keys, values) if raw is not None]
        return _decode_reservations(rows, source=self.name)

    def put_reservation(self, record: ReservationRecord) -> None:
        payload = json.dumps(record.to_dict())
        self._call(lambda: self.client.set(RESERVATION_PREFIX + record.reservation_id, payload))

    def delete_reservation(self, reservation_id: str) -> bool:
        removed = self._call(lambda: self.client.delete(RESERVATION_PREFIX + reservation_id))
        return bool(removed)

    def get_credential(self, email: str) -> CredentialRecord | None:
        raw = self._call(lambda: self.client.get(USER_PREFIX + email))
        if raw is None:
            return None
        return _decode_credential(_load_json(raw, USER_PREFIX + email), source=self.name)

    def put_credential(self, record: CredentialRecord) -> None:
        payload = json.dumps(record.to_dict())
        self._call(lambda: self.client.set(USER_PREFIX + record.email, payload))

    def count_credentials(self) -> int:
        return len(self._call(lambda: list(self.client.scan_iter(match=USER_PREFIX + "*"))))

    def get_latest_identity(self) -> str | None:
        raw = self._call(lambda: self.client.get(LATEST_USER_KEY))
        if raw is None:
            return None
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)

    def set_latest_identity(self, email: str) -> None:
        self._call(lambda: self.client.set(LATEST_USER_KEY, email))

    def clear_latest_identity(self) -> None:
        self._call(lambda: self.client.delete(LATEST_USER_KEY))


class YamlFileStore(ReservationStore):
    """Durable single-host store kept in YAML files under ``base_dir``."""

    name = "yaml"

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.reservations_file = self.base_dir / "reservations.yaml"
        self.credentials_file = self.base_dir / "credentials.yaml"
        self.state_file = self.base_dir / "state.yaml"
        self._lock = threading.RLock()
        self._ensure_files()

    def _ensure_files(self) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            for path in (self.reservations_file, self.credentials_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")
            if not self.state_file.exists():
                self.state_file.write_text("{}\n", encoding="utf-8")
        except OSError as error:
            raise StoreUnavailable(f"Failed to prepare data directory: {self.base_dir}") from error

    def _read_yaml(self, path: Path, expected: type) -> Any:
        empty = expected()
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            self._write_yaml(path, empty)
            return empty
        except (UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, empty, error)
            return empty
        except OSError as error:
            raise StoreUnavailable(f"Failed to read YAML file: {path}") from error

        if payload is None:
            return empty
        if not isinstance(payload, expected):
            self._recover_corrupted_yaml(path, empty, ValueError(f"top-level YAML is not a {expected.__name__}"))
            return empty
        return payload

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(self._read_yaml(path, list)):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                logger.warning("Skipping row %s in %s: row is not a mapping", index, path.name)
        return sanitized

    def _write_yaml(self, path: Path, payload: Any) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(payload, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise StoreUnavailable(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, empty: Any, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            logger.exception("Could not back up corrupted file %s", path.name)

        self._write_yaml(path, empty)
        logger.warning("Recovered corrupted %s (backup: %s): %s", path.name, backup_path.name, error)

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        with self._lock:
            rows = self._read_yaml_list(self.reservations_file)
        for row in rows:
            if str(row.get("id")) == reservation_id:
                return _decode_reservation(row, source=self.name)
        return None

    def list_reservations(self) -> list[ReservationRecord]:
        with self._lock:
            rows = self._read_yaml_list(self.reservations_file)
        return _decode_reservations(rows, source=self.name)

    def put_reservation(self, record: ReservationRecord) -> None:
        with self._lock:
            rows = [row for row in self._read_yaml_list(self.reservations_file) if str(row.get("id")) != record.reservation_id]
            rows.append(record.to_dict())
            self._write_yaml(self.reservations_file, rows)

    def delete_reservation(self, reservation_id: str) -> bool:
        with self._lock:
            rows = self._read_yaml_list(self.reservations_file)
            remaining = [row for row in rows if str(row.get("id")) != reservation_id]
            if len(remaining) == len(rows):
                return False
            self._write_yaml(self.reservations_file, remaining)
            return True

    def get_credential(self, email: str) -> CredentialRecord | None:
        with self._lock:
            rows = self._read_yaml_list(self.credentials_file)
        for row in rows:
            if str(row.get("email")) == email:
                return _decode_credential(row, source=self.name)
        return None

    def put_credential(self, record: CredentialRecord) -> None:
        with self._lock:
            rows = [row for row in self._read_yaml_list(self.credentials_file) if str(row.get("email")) != record.email]
            rows.append(record.to_dict())
            self._write_yaml(self.credentials_file, rows)

    def count_credentials(self) -> int:
        with self._lock:
            return len(self._read_yaml_list(self.credentials_file))

    def get_latest_identity(self) -> str | None:
        with self._lock:
            state = self._read_yaml(self.state_file, dict)
        value = state.get(LATEST_USER_KEY)
        return str(value) if value else None

    def set_latest_identity(self, email: str) -> None:
        with self._lock:
            state = self._read_yaml(self.state_file, dict)
            state[LATEST_USER_KEY] = email
            self._write_yaml(self.state_file, state)

    def clear_latest_identity(self) -> None:
        with self._lock:
            state = self._read_yaml(self.state_file, dict)
            if state.pop(LATEST_USER_KEY, None) is not None:
                self._write_yaml(self.state_file, state)


class FallbackStore(ReservationStore):
    """Primary backend with a volatile fallback.

    Reads that fail on the primary are served by the fallback for that call only.
    Writes never leave the primary: a failed write raises ``PersistenceFailure``
    so a reservation is never stored in two places.
    """

    def __init__(self, primary: ReservationStore | None, fallback: ReservationStore | None = None) -> None:
        self.primary = primary
        self.fallback = fallback or MemoryStore()
        self.name = primary.name if primary is not None else self.fallback.name
        self._degraded = False
        self._state_lock = threading.Lock()

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _mark_degraded(self, error: Exception) -> None:
        with self._state_lock:
            first = not self._degraded
            self._degraded = True
        if first:
            logger.warning("%s backend unavailable, degrading to %s: %s", self.name, self.fallback.name, error)

    def _mark_healthy(self) -> None:
        with self._state_lock:
            recovered = self._degraded
            self._degraded = False
        if recovered:
            logger.info("%s backend recovered", self.name)

    def _read(self, operation: Callable[[ReservationStore], T]) -> T:
        if self.primary is None:
            return operation(self.fallback)
        try:
            result = operation(self.primary)
        except StoreUnavailable as error:
            self._mark_degraded(error)
            return operation(self.fallback)
        self._mark_healthy()
        return result

    def _write(self, operation: Callable[[ReservationStore], T], action: str = "write to") -> T:
        if self.primary is None:
            return operation(self.fallback)
        try:
            result = operation(self.primary)
        except StoreUnavailable as error:
            self._mark_degraded(error)
            raise PersistenceFailure(f"Could not {action} {self.name} backend: {error}") from error
        self._mark_healthy()
        return result

    def get_reservation(self, reservation_id: str) -> ReservationRecord | None:
        return self._read(lambda store: store.get_reservation(reservation_id))

    def get_reservation_for_write(self, reservation_id: str) -> ReservationRecord | None:
        # The fallback never holds records while a primary is configured.
        return self._write(lambda store: store.get_reservation(reservation_id), action="read from")

    def list_reservations(self) -> list[ReservationRecord]:
        return self._read(lambda store: store.list_reservations())

    def list_reservations_by_date(self, date: str) -> list[ReservationRecord]:
        return self._read(lambda store: store.list_reservations_by_date(date))

    def put_reservation(self, record: ReservationRecord) -> None:
        self._write(lambda store: store.put_reservation(record))

    def delete_reservation(self, reservation_id: str) -> bool:
        return self._write(lambda store: store.delete_reservation(reservation_id))

    def get_credential(self, email: str) -> CredentialRecord | None:
        return self._read(lambda store: store.get_credential(email))

    def put_credential(self, record: CredentialRecord) -> None:
        self._write(lambda store: store.put_credential(record))

    def count_credentials(self) -> int:
        return self._read(lambda store: store.count_credentials())

    def get_latest_identity(self) -> str | None:
        return self._read(lambda store: store.get_latest_identity())

    def set_latest_identity(self, email: str) -> None:
        self._write(lambda store: store.set_latest_identity(email))

    def clear_latest_identity(self) -> None:
        self._write(lambda store: store.clear_latest_identity())

    def describe(self) -> dict[str, Any]:
        if self.primary is None:
            return {**self.fallback.describe(), "fallback": None, "degraded": False}
        primary = self.primary.describe()
        return {
            **primary,
            "fallback": self.fallback.name,
            "degraded": self._degraded or not primary.get("healthy", False),
        }


def build_store(config: Mapping[str, Any]) -> FallbackStore:
    """Select the backend chain once, from configuration."""
    backend = str(config.get("STORE_BACKEND") or "auto").lower()
    redis_url = config.get("REDIS_URL")
    if backend == "auto":
        backend = "redis" if redis_url else "memory"

    if backend == "memory":
        logger.info("Using in-memory reservation store; data is lost on restart")
        return FallbackStore(None, MemoryStore())

    if backend == "yaml":
        data_dir = config.get("DATA_DIR") or "data"
        logger.info("Using YAML reservation store in %s", data_dir)
        return FallbackStore(YamlFileStore(data_dir), MemoryStore())

    if backend == "redis":
        if not redis_url:
            raise ValueError("STORE_BACKEND=redis requires REDIS_URL")
        primary = RedisStore.from_url(str(redis_url), float(config.get("REDIS_TIMEOUT_SECONDS", 5.0)))
        try:
            primary.ping()
            logger.info("Redis connection successful")
        except StoreUnavailable as error:
            logger.warning("Redis not reachable at startup, reads will use memory until it recovers: %s", error)
        return FallbackStore(primary, MemoryStore())

    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def _load_json(raw: Any, key: str) -> Any:
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Skipping malformed record %s", key)
        return None


def _decode_reservation(row: Any, source: str) -> ReservationRecord | None:
    if not isinstance(row, dict):
        return None
    try:
        return ReservationRecord.from_dict(row)
    except (KeyError, TypeError, ValueError) as error:
        logger.warning("Skipping malformed reservation in %s store: %s", source, error)
        return None


def _decode_reservations(rows: list[Any], source: str) -> list[ReservationRecord]:
    records = [_decode_reservation(row, source) for row in rows]
    return [record for record in records if record is not None]


def _decode_credential(row: Any, source: str) -> CredentialRecord | None:
    if not isinstance(row, dict):
        return None
    try:
        return CredentialRecord.from_dict(row)
    except (KeyError, TypeError, ValueError) as error:
        logger.warning("Skipping malformed credential in %s store: %s", source, error)
        return None
