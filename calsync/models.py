from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any


PRIMARY_CALENDAR_ID = "primary"
DEFAULT_START_HOUR = 10
DEFAULT_START_MINUTE = 30


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def schedule_origin(day: date, start_hour: int, start_minute: int) -> datetime:
    """Wall-clock start of the stacking cursor; naive, interpreted in the configured zone."""
    return datetime.combine(day, time(hour=start_hour, minute=start_minute))


def _bounded_int(value: Any, default: int, low: int, high: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number < low or number > high:
        return default
    return number


@dataclass
class GoogleConfig:
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    access_token: str = ""
    token_expiry: int = 0
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GoogleConfig":
        data = data or {}
        return cls(
            client_id=str(data.get("client_id", "")).strip(),
            client_secret=str(data.get("client_secret", "")).strip(),
            refresh_token=str(data.get("refresh_token", "") or "").strip(),
            access_token=str(data.get("access_token", "") or "").strip(),
            token_expiry=int(data.get("token_expiry", 0) or 0),
            timeout_seconds=max(1, int(data.get("timeout_seconds") or 30)),
        )

    def is_configured(self) -> bool:
        return bool(self.client_id and self.refresh_token)


@dataclass
class SchedulingConfig:
    start_hour: int = DEFAULT_START_HOUR
    start_minute: int = DEFAULT_START_MINUTE
    calendar_id: str = PRIMARY_CALENDAR_ID
    time_zone: str = "UTC"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SchedulingConfig":
        data = data or {}
        return cls(
            start_hour=_bounded_int(data.get("start_hour"), DEFAULT_START_HOUR, 0, 23),
            start_minute=_bounded_int(data.get("start_minute"), DEFAULT_START_MINUTE, 0, 59),
            calendar_id=str(data.get("calendar_id", "") or "").strip() or PRIMARY_CALENDAR_ID,
            time_zone=str(data.get("time_zone", "UTC") or "").strip() or "UTC",
        )


@dataclass
class StorageConfig:
    vault_path: str = "."
    sync_data_path: str = "data/sync-data.json"
    state_db_path: str = "data/state.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StorageConfig":
        data = data or {}
        return cls(
            vault_path=str(data.get("vault_path", ".")).strip() or ".",
            sync_data_path=str(data.get("sync_data_path", "data/sync-data.json")).strip()
            or "data/sync-data.json",
            state_db_path=str(data.get("state_db_path", "data/state.db")).strip() or "data/state.db",
        )


@dataclass
class AppConfig:
    google: GoogleConfig = field(default_factory=GoogleConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            google=GoogleConfig.from_dict(data.get("google")),
            scheduling=SchedulingConfig.from_dict(data.get("scheduling")),
            storage=StorageConfig.from_dict(data.get("storage")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TodoRecord:
    text: str
    estimated_minutes: int
    actual_minutes: int | None = None
    completed: bool = False
    source_line: int = 0
    raw_line: str = ""
    identifier: str = ""


@dataclass
class SyncEntry:
    identifier: str
    remote_event_id: str
    document_path: str
    last_known_text: str
    last_known_estimated_minutes: int
    last_synced_at: str = ""
    source_line: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncEntry":
        identifier = str(data.get("hash", "")).strip()
        remote_event_id = str(data.get("googleEventId", "")).strip()
        if not identifier or not remote_event_id:
            raise ValueError("sync record requires hash and googleEventId")
        return cls(
            identifier=identifier,
            remote_event_id=remote_event_id,
            document_path=str(data.get("filePath", "")),
            last_known_text=str(data.get("todoText", "")),
            last_known_estimated_minutes=int(data.get("durationMinutes", 0)),
            last_synced_at=str(data.get("lastSynced", "") or ""),
            source_line=int(data.get("lineNumber", 0) or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.identifier,
            "googleEventId": self.remote_event_id,
            "filePath": self.document_path,
            "lineNumber": self.source_line,
            "todoText": self.last_known_text,
            "durationMinutes": self.last_known_estimated_minutes,
            "lastSynced": self.last_synced_at,
        }


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    synced: int
    failures: int
    trigger: str
    document_path: str = ""
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "synced": self.synced,
            "failures": self.failures,
            "trigger": self.trigger,
            "document_path": self.document_path,
            "run_at": serialize_datetime(self.run_at),
        }


def default_app_config() -> AppConfig:
    return AppConfig()
