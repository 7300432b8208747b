from __future__ import annotations

from crmsync.application.two_way_sync.schema_mapper import (
    SchemaMapper,
    disambiguate_headers,
    find_header_index,
    normalize_header,
)
from crmsync.application.two_way_sync.state_keys import header_map_key, load_json
from crmsync.core.errors import ExternalServiceError
from crmsync.domain.models import ColumnConfig, FieldDefinition, FieldKind, FieldOption
from crmsync.infrastructure.kv_store_memory import InMemoryKeyValueStore

HASH = "b" * 40


class _FakeRemote:
    def __init__(self, definitions=None, error: Exception | None = None) -> None:
        self.definitions = definitions or {}
        self.error = error
        self.calls = 0

    def get_field_definitions(self, entity_type):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.definitions


def test_normalize_y_disambiguate_headers() -> None:
    assert normalize_header(" Deal-Value (EUR) ") == "dealvalueeur"
    assert disambiguate_headers(["Name", "Email", "Name", "Name"]) == ["Name", "Email", "Name (2)", "Name (3)"]


def test_find_header_index_exacto_y_normalizado() -> None:
    headers = ["ID", "Deal Title", "Value"]

    assert find_header_index(headers, "Value") == 2
    assert find_header_index(headers, "deal_title") == 1
    assert find_header_index(headers, "Missing") is None


def test_save_columns_construye_mapa_con_repetidos_sinonimos_y_direccion() -> None:
    store = InMemoryKeyValueStore()
    mapper = SchemaMapper(store)

    mapping = mapper.save_columns(
        "Deals",
        "deals",
        [
            ColumnConfig("title", "Title"),
            ColumnConfig("person_id.name", "Name"),
            ColumnConfig("org_id.name", "Name"),
            ColumnConfig("value", "Value", custom_name="Importe"),
            ColumnConfig("address", "Address"),
        ],
    )

    assert mapping["Title"] == "title"
    assert mapping["Name"] == "person_id.name"
    assert mapping["Name (2)"] == "org_id.name"
    assert mapping["Importe"] == "value"
    assert mapping["Value"] == "value"
    assert mapping["Owner Name"] == "owner_id.name"
    assert mapping["Address - City"] == "address_locality"
    assert mapping["Address - Full/Combined Address"] == "address_formatted_address"
    assert load_json(store, header_map_key("Deals", "deals")) == mapping
    assert [column.display_name for column in mapper.load_columns("Deals", "deals")] == [
        "Title",
        "Name",
        "Name",
        "Importe",
        "Address",
    ]


def test_resolve_mapping_reconstruye_desde_columnas_si_falta_el_mapa() -> None:
    store = InMemoryKeyValueStore()
    mapper = SchemaMapper(store)
    mapper.save_columns("Deals", "deals", [ColumnConfig("title", "Title")])
    store.delete(header_map_key("Deals", "deals"))

    assert mapper.resolve_mapping("Deals", "deals")["Title"] == "title"
    assert store.get(header_map_key("Deals", "deals")) is not None


def test_entries_clasifica_cada_cabecera() -> None:
    remote = _FakeRemote(
        {
            "stage_id": FieldDefinition("stage_id", "Stage", "enum", (FieldOption(7, "High"),)),
            HASH: FieldDefinition(HASH, "Opening hours", "timerange"),
        }
    )
    mapper = SchemaMapper(InMemoryKeyValueStore(), remote)
    mapper.save_columns(
        "Deals",
        "deals",
        [
            ColumnConfig("id", "ID"),
            ColumnConfig("email.work", "Email"),
            ColumnConfig("stage_id", "Stage"),
            ColumnConfig(HASH, "Opens"),
            ColumnConfig(HASH + "_until", "Closes"),
            ColumnConfig("owner_id.name", "Owner Name"),
            ColumnConfig("address", "Address"),
        ],
    )
    headers = ["ID", "Email", "Stage", "Opens", "Closes", "Owner Name", "Address", "Address - City", "Sync Status", "Notas"]

    entries = mapper.entries("Deals", "deals", headers)

    assert entries[0].read_only
    assert entries[1].kind == FieldKind.LABELED_LIST
    assert entries[2].options == (FieldOption(7, "High"),)
    assert (entries[3].kind, entries[3].component, entries[3].base_key) == (FieldKind.TIME_RANGE_PAIR, "start", HASH)
    assert (entries[4].kind, entries[4].component) == (FieldKind.TIME_RANGE_PAIR, "end")
    assert (entries[5].kind, entries[5].base_key, entries[5].read_only) == (FieldKind.SCALAR, None, True)
    assert (entries[6].base_key, entries[6].field_type) == ("address", "address")
    assert (entries[7].kind, entries[7].component, entries[7].base_key) == (FieldKind.ADDRESS_COMPONENT, "locality", "address")
    assert entries[8] is None
    assert entries[9] is None


def test_field_definitions_se_cachean_y_toleran_fallos() -> None:
    remote = _FakeRemote({"title": FieldDefinition("title")})
    mapper = SchemaMapper(InMemoryKeyValueStore(), remote)

    mapper.field_definitions("deals")
    mapper.field_definitions("deals")
    assert remote.calls == 1

    failing = SchemaMapper(InMemoryKeyValueStore(), _FakeRemote(error=ExternalServiceError("caído")))
    assert failing.field_definitions("deals") == {}


def test_heal_drift_anade_alias_sin_borrar_entradas() -> None:
    store = InMemoryKeyValueStore()
    mapper = SchemaMapper(store)
    mapper.save_columns("Deals", "deals", [ColumnConfig("title", "Title"), ColumnConfig("value", "Value", custom_name="Importe")])
    before = mapper.resolve_mapping("Deals", "deals")

    changed = mapper.heal_drift("Deals", "deals", ["TITLE", "importe ", "value_", "Sync Status", "Desconocida"])

    after = mapper.resolve_mapping("Deals", "deals")
    assert changed
    assert after["TITLE"] == "title"
    assert after["value_"] == "value"
    assert "Desconocida" not in after
    assert all(after[header] == key for header, key in before.items())
    assert mapper.heal_drift("Deals", "deals", ["TITLE"]) is False
