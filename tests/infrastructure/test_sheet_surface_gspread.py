from __future__ import annotations

from crmsync.domain.models import SyncStatus
from crmsync.infrastructure.sheet_surface_gspread import GspreadSheetSurface


class _FakeSheetsClient:
    def __init__(self, values) -> None:
        self.values = values
        self.cells = []
        self.formats = []

    def read_row(self, name: str, row_index: int):
        return self.values[row_index - 1]

    def read_all_values(self, name: str):
        return self.values

    def update_cell(self, name: str, row_index: int, column_index: int, value) -> None:
        self.cells.append((name, row_index, column_index, value))

    def format_range(self, name: str, range_name: str, cell_format) -> None:
        self.formats.append((name, range_name, cell_format))


def test_lee_cabeceras_y_filas_normalizadas() -> None:
    client = _FakeSheetsClient([[" ID ", "Title", None, "Sync Status"], ["1", "Deal A"], ["2", "Deal B", "x", "Synced", "sobra"]])
    surface = GspreadSheetSurface(client)

    assert surface.read_headers("Deals") == ["ID", "Title", "", "Sync Status"]
    assert surface.read_rows("Deals") == [["1", "Deal A", "", ""], ["2", "Deal B", "x", "Synced"]]
    assert surface.read_row("Deals", 2) == ["1", "Deal A"]


def test_hoja_vacia_no_tiene_filas() -> None:
    assert GspreadSheetSurface(_FakeSheetsClient([])).read_rows("Deals") == []


def test_write_status_escribe_etiqueta_y_formato() -> None:
    client = _FakeSheetsClient([])

    GspreadSheetSurface(client).write_status("Deals", 3, 6, SyncStatus.ERROR)

    assert client.cells == [("Deals", 3, 6, "Error")]
    name, range_name, cell_format = client.formats[0]
    assert (name, range_name) == ("Deals", "F3")
    assert cell_format["textFormat"]["bold"] is True
    assert cell_format["backgroundColor"] == {"red": 0.9882, "green": 0.9098, "blue": 0.902}
