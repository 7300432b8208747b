from __future__ import annotations

from datetime import date, datetime

import pytest

from crmsync.application.two_way_sync.payload_builder import address_projection
from crmsync.application.two_way_sync.value_normalizer import (
    ValueNormalizer,
    canonical_email,
    canonical_phone,
    generic_equal,
    names_equal,
    structural_snapshot,
)
from crmsync.domain.models import FieldKind, MappingEntry

EMAIL = MappingEntry("Email", "email.work", FieldKind.LABELED_LIST)
PHONE = MappingEntry("Phone", "phone.work", FieldKind.LABELED_LIST)
NAME = MappingEntry("Name", "name", FieldKind.SCALAR)
TITLE = MappingEntry("Title", "title", FieldKind.SCALAR)


def test_email_tolera_errores_tipicos_de_dominio() -> None:
    normalizer = ValueNormalizer()

    assert canonical_email(" Jane@GMAIL.COMM ") == "jane@gmail.com"
    assert normalizer.equals("jane@gmail.com", "Jane@gmial.com", EMAIL)
    assert not normalizer.equals("jane@gmail.com", "john@gmail.com", EMAIL)


def test_telefono_compara_solo_digitos() -> None:
    assert canonical_phone("+1 (555) 010-2030") == "15550102030"
    assert ValueNormalizer().equals("+1 555 010 2030", "15550102030", PHONE)


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [
        ("Simpson", "Simpsonm", True),
        ("Jane Doe", "Jane Doel", True),
        ("Simpsonm", "Simpson", True),
        ("Smith", "Smyth", False),
        ("Ann", "Anna", False),
        ("Simpson", "Simpsonmm", False),
    ],
)
def test_nombres_toleran_una_letra_final(left: str, right: str, expected: bool) -> None:
    assert names_equal(left, right) is expected


def test_tolerancia_de_nombre_solo_en_campos_nombre() -> None:
    normalizer = ValueNormalizer()

    assert normalizer.equals("Simpson", "Simpsonm", NAME)
    assert not normalizer.equals("Simpson", "Simpsonm", TITLE)


@pytest.mark.parametrize(
    ("left", "right"),
    [
        ("100", 100),
        ("100.0", "100"),
        ("0.30000", 0.3),
        ("TRUE", True),
        (None, ""),
        ("  ", None),
        ("2024-03-01", date(2024, 3, 1)),
        ("2024-03-01T10:00:00Z", datetime(2024, 3, 1, 10, 0, 0)),
    ],
)
def test_generic_equal_formas_equivalentes(left, right) -> None:
    assert generic_equal(left, right)


@pytest.mark.parametrize(("left", "right"), [("100", "101"), ("1.5", "1.6"), ("2024-03-01", "2024-03-02"), ("abc", "")])
def test_generic_equal_valores_distintos(left, right) -> None:
    assert not generic_equal(left, right)


def test_snapshot_estructural_compara_la_direccion_reconstruida() -> None:
    entries = [
        MappingEntry("Address - Street Number", "address_street_number", FieldKind.ADDRESS_COMPONENT, "address", "address", "street_number"),
        MappingEntry("Address - Street Name", "address_route", FieldKind.ADDRESS_COMPONENT, "address", "address", "route"),
        MappingEntry("Address - City", "address_locality", FieldKind.ADDRESS_COMPONENT, "address", "address", "locality"),
    ]
    before = {"Address - Street Number": "12", "Address - Street Name": "Main St", "Address - City": "Springfield"}
    snapshot = structural_snapshot("address", address_projection(before, entries, "address"))
    normalizer = ValueNormalizer()

    same = dict(before, **{"Address - Street Name": "  main   st "})
    moved = dict(before, **{"Address - City": "Shelbyville"})

    assert snapshot["projection"] == "12 main st, springfield"
    assert normalizer.equals(snapshot, "main st", entries[1], row_values=same, entries=entries)
    assert not normalizer.equals(snapshot, "Shelbyville", entries[2], row_values=moved, entries=entries)
