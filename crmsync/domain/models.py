from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

ENTITY_DEALS = "deals"
ENTITY_PERSONS = "persons"
ENTITY_ORGANIZATIONS = "organizations"
ENTITY_ACTIVITIES = "activities"
ENTITY_LEADS = "leads"
ENTITY_PRODUCTS = "products"

ENTITY_TYPES = (
    ENTITY_DEALS,
    ENTITY_PERSONS,
    ENTITY_ORGANIZATIONS,
    ENTITY_ACTIVITIES,
    ENTITY_LEADS,
    ENTITY_PRODUCTS,
)

SYNC_STATUS_HEADER = "Sync Status"


class SyncStatus(str, Enum):
    NOT_MODIFIED = "not_modified"
    MODIFIED = "modified"
    SYNCED = "synced"
    ERROR = "error"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def from_label(cls, raw: Any) -> Optional["SyncStatus"]:
        text = str(raw or "").strip().lower()
        if not text:
            return None
        for status, label in _STATUS_LABELS.items():
            if text in (label.lower(), status.value):
                return status
        return None


_STATUS_LABELS = {
    SyncStatus.NOT_MODIFIED: "Not modified",
    SyncStatus.MODIFIED: "Modified",
    SyncStatus.SYNCED: "Synced",
    SyncStatus.ERROR: "Error",
}


class FieldKind(str, Enum):
    SCALAR = "scalar"
    LABELED_LIST = "labeled_list"
    ADDRESS_COMPONENT = "address_component"
    CUSTOM_FIELD = "custom_field"
    TIME_RANGE_PAIR = "time_range_pair"
    LINKED_ENTITY = "linked_entity"


@dataclass(frozen=True)
class ColumnConfig:
    """Columna elegida para la hoja: clave de campo CRM y nombre visible.

    ``custom_name`` es el nombre que el usuario puso a mano; cuando existe
    manda sobre ``name`` al construir la cabecera.
    """

    key: str
    name: str
    custom_name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return (self.custom_name or "").strip() or self.name.strip()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"key": self.key, "name": self.name}
        if self.custom_name:
            payload["customName"] = self.custom_name
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ColumnConfig":
        return cls(
            key=str(payload.get("key", "")).strip(),
            name=str(payload.get("name", "")).strip(),
            custom_name=(str(payload.get("customName") or payload.get("custom_name") or "").strip() or None),
        )


@dataclass(frozen=True)
class FieldOption:
    id: int | str
    label: str


@dataclass(frozen=True)
class FieldDefinition:
    key: str
    name: str = ""
    field_type: str = ""
    options: tuple[FieldOption, ...] = ()


@dataclass(frozen=True)
class MappingEntry:
    header: str
    field_key: str
    kind: FieldKind
    field_type: str = ""
    base_key: Optional[str] = None
    component: Optional[str] = None
    read_only: bool = False
    options: tuple[FieldOption, ...] = ()

    @property
    def is_option_field(self) -> bool:
        return self.field_type in ("enum", "set")


@dataclass(frozen=True)
class EditEvent:
    row: int
    column: int
    old_value: Any = None
    new_value: Any = None


class EditOutcome(str, Enum):
    IGNORED = "ignored"
    DROPPED_LOCKED = "dropped_locked"
    MARKED_MODIFIED = "marked_modified"
    STILL_MODIFIED = "still_modified"
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass(frozen=True)
class EditResult:
    outcome: EditOutcome
    row_id: Optional[str] = None
    header: Optional[str] = None
    status: Optional[SyncStatus] = None
    persisted: bool = False


@dataclass
class CellState:
    """Estado persistido de una fila: estado de sync y valores originales por cabecera."""

    status: SyncStatus = SyncStatus.NOT_MODIFIED
    last_changed: float = 0.0
    original_values: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_changed": self.last_changed,
            "original_values": dict(self.original_values),
        }

    @classmethod
    def from_payload(cls, payload: Any) -> "CellState":
        if not isinstance(payload, dict):
            return cls()
        try:
            status = SyncStatus(payload.get("status", SyncStatus.NOT_MODIFIED.value))
        except ValueError:
            status = SyncStatus.NOT_MODIFIED
        originals = payload.get("original_values")
        try:
            last_changed = float(payload.get("last_changed") or 0.0)
        except (TypeError, ValueError):
            last_changed = 0.0
        return cls(
            status=status,
            last_changed=last_changed,
            original_values=dict(originals) if isinstance(originals, dict) else {},
        )


@dataclass(frozen=True)
class SheetRow:
    row_index: int
    record_id: str
    values: dict[str, Any]


@dataclass(frozen=True)
class RemoteUpdateResult:
    success: bool
    data: Any = None
    error: Any = None
    status_code: Optional[int] = None


@dataclass(frozen=True)
class PushFailure:
    row_index: int
    record_id: str
    message: str


@dataclass(frozen=True)
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    failures: tuple[PushFailure, ...] = ()

    @property
    def total_processed(self) -> int:
        return self.success_count + self.failure_count

    @property
    def total_failures(self) -> int:
        return self.failure_count

    @property
    def has_hidden_failures(self) -> bool:
        return self.failure_count > len(self.failures)


class SyncPhase(str, Enum):
    CONNECTING = "1"
    RETRIEVING = "2"
    WRITING = "3"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class PhaseReport:
    phase: SyncPhase
    status: PhaseStatus
    detail: str
    progress_percent: int


@dataclass(frozen=True)
class TableSyncSettings:
    table_id: str
    entity_type: str
    filter_id: str = ""
    two_way_sync_enabled: bool = False


@dataclass(frozen=True)
class CrmConfig:
    subdomain: str
    access_token: str
    credentials_path: str
    spreadsheet_id: str
    device_id: str
    tables: dict[str, TableSyncSettings] = field(default_factory=dict)

    def table(self, table_id: str) -> TableSyncSettings | None:
        return self.tables.get(table_id)


@dataclass(frozen=True)
class SyncRunResult:
    push_result: Optional[PushResult]
    pulled_records: int
    reports: tuple[PhaseReport, ...] = ()
