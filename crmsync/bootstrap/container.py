from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from crmsync.application.two_way_sync.change_tracker import ChangeTracker
from crmsync.application.two_way_sync.lease import LeaseManager
from crmsync.application.two_way_sync.orchestrator import SyncOrchestrator
from crmsync.application.two_way_sync.push_coordinator import PushCoordinator
from crmsync.application.two_way_sync.schema_mapper import SchemaMapper
from crmsync.application.two_way_sync.state_keys import NamespacedStore
from crmsync.bootstrap.settings import SyncTunables, load_tunables
from crmsync.domain.errors import SyncNotConfiguredError
from crmsync.domain.models import CrmConfig
from crmsync.domain.ports import ProgressReporterPort
from crmsync.infrastructure.crm_client import CrmClient
from crmsync.infrastructure.db import get_connection
from crmsync.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from crmsync.infrastructure.local_config import CrmConfigStore
from crmsync.infrastructure.sheet_puller import SheetPuller
from crmsync.infrastructure.sheet_surface_gspread import GspreadSheetSurface
from crmsync.infrastructure.sheets_client import SheetsClient


@dataclass
class AppContainer:
    config: CrmConfig
    mapper: SchemaMapper
    change_tracker: ChangeTracker
    push_coordinator: PushCoordinator
    orchestrator: SyncOrchestrator


ConnectionFactory = Callable[[], object]


def _entity_type_resolver(config: CrmConfig) -> Callable[[str], str]:
    def resolve(table_id: str) -> str:
        settings = config.table(table_id)
        if settings is None:
            raise SyncNotConfiguredError(f"La tabla {table_id} no está configurada.")
        return settings.entity_type

    return resolve


def build_container(
    connection_factory: ConnectionFactory = get_connection,
    *,
    config_store: CrmConfigStore | None = None,
    sheets_client: SheetsClient | None = None,
    reporter: ProgressReporterPort | None = None,
    tunables: SyncTunables | None = None,
) -> AppContainer:
    config_store = config_store or CrmConfigStore()
    config = config_store.load()
    if config is None:
        raise SyncNotConfiguredError(f"Falta la configuración del CRM en {config_store.config_path}.")
    tunables = tunables or load_tunables()

    store = NamespacedStore(SQLiteKeyValueStore(connection_factory()), config.subdomain)
    remote = CrmClient(config.subdomain, config.access_token, timeout_s=tunables.http_timeout_seconds)
    sheets_client = sheets_client or SheetsClient()
    sheets_client.open_spreadsheet(Path(config.credentials_path), config.spreadsheet_id)
    surface = GspreadSheetSurface(sheets_client)

    mapper = SchemaMapper(store, remote)
    lease = LeaseManager(store, f"{config.device_id}:{uuid.uuid4().hex[:8]}", ttl_seconds=tunables.lease_ttl_seconds)
    change_tracker = ChangeTracker(
        store,
        surface,
        mapper,
        lease,
        _entity_type_resolver(config),
        cooldown_seconds=tunables.transition_cooldown_seconds,
    )
    push_coordinator = PushCoordinator(config_store, surface, remote, mapper, change_tracker)
    orchestrator = SyncOrchestrator(
        config_store,
        push_coordinator,
        SheetPuller(sheets_client, remote, mapper),
        change_tracker,
        reporter,
    )
    return AppContainer(
        config=config,
        mapper=mapper,
        change_tracker=change_tracker,
        push_coordinator=push_coordinator,
        orchestrator=orchestrator,
    )
