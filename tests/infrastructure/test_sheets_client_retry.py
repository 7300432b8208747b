from __future__ import annotations

import gspread
import pytest

from crmsync.domain.errors import SheetsNotFoundError, SheetsPermissionError, SheetsRateLimitError
from crmsync.infrastructure.sheets_client import SheetsClient


class _FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text


def _api_error(status_code: int, text: str) -> gspread.exceptions.APIError:
    return gspread.exceptions.APIError(_FakeResponse(status_code, text))


def _rate_limit_error() -> gspread.exceptions.APIError:
    return _api_error(429, "RESOURCE_EXHAUSTED: Quota exceeded for read requests per minute")


class _FakeGspreadClient:
    def __init__(self, fail_times: int = 0, error_factory=_rate_limit_error) -> None:
        self._fail_times = fail_times
        self._error_factory = error_factory
        self.calls = 0

    def open_by_key(self, _: str):
        self.calls += 1
        if self.calls <= self._fail_times:
            raise self._error_factory()
        return _FakeSpreadsheet()


class _FakeWorksheet:
    def __init__(self, values=None, write_failures: int = 0) -> None:
        self.values = values or []
        self.write_failures = write_failures
        self.cleared = []
        self.updates = []
        self.cells = []
        self.formats = []

    def get_all_values(self):
        return self.values

    def row_values(self, row_index: int):
        return self.values[row_index - 1]

    def _maybe_fail(self) -> None:
        if self.write_failures:
            self.write_failures -= 1
            raise _api_error(429, "Quota exceeded for write requests per minute per user")

    def update_cell(self, row: int, col: int, value) -> None:
        self._maybe_fail()
        self.cells.append((row, col, value))

    def batch_clear(self, ranges) -> None:
        self.cleared.append(list(ranges))

    def update(self, range_name: str, values, value_input_option: str) -> None:
        self.updates.append((range_name, values, value_input_option))

    def format(self, range_name: str, cell_format) -> None:
        self.formats.append((range_name, cell_format))


class _FakeSpreadsheet:
    id = "sheet-id"

    def __init__(self, worksheets=None) -> None:
        self.worksheets = worksheets or {}
        self.lookups = 0

    def worksheet(self, name: str):
        self.lookups += 1
        if name not in self.worksheets:
            raise gspread.exceptions.WorksheetNotFound(name)
        return self.worksheets[name]


def test_open_spreadsheet_retry_hasta_exito(monkeypatch) -> None:
    fake_client = _FakeGspreadClient(fail_times=2)
    sleep_calls: list[float] = []
    monkeypatch.setattr("crmsync.infrastructure.sheets_client.gspread.service_account", lambda filename: fake_client)

    result = SheetsClient(sleep=sleep_calls.append).open_spreadsheet("/tmp/credentials.json", "sheet-id")

    assert isinstance(result, _FakeSpreadsheet)
    assert fake_client.calls == 3
    assert sleep_calls == [1, 2]


def test_open_spreadsheet_lanza_rate_limit_al_agotar_reintentos(monkeypatch) -> None:
    fake_client = _FakeGspreadClient(fail_times=5)
    monkeypatch.setattr("crmsync.infrastructure.sheets_client.gspread.service_account", lambda filename: fake_client)

    with pytest.raises(SheetsRateLimitError):
        SheetsClient(sleep=lambda _: None).open_spreadsheet("/tmp/credentials.json", "sheet-id")

    assert fake_client.calls == 5


def test_open_spreadsheet_sin_permisos_no_reintenta(monkeypatch, caplog) -> None:
    fake_client = _FakeGspreadClient(fail_times=1, error_factory=lambda: _api_error(403, "PERMISSION_DENIED"))
    monkeypatch.setattr("crmsync.infrastructure.sheets_client.gspread.service_account", lambda filename: fake_client)

    with pytest.raises(SheetsPermissionError):
        SheetsClient(sleep=lambda _: None).open_spreadsheet("/tmp/credentials.json", "sheet-id")

    assert fake_client.calls == 1
    assert "permisos insuficientes" in caplog.text


def test_worksheet_se_cachea_y_pestana_inexistente_se_mapea() -> None:
    spreadsheet = _FakeSpreadsheet({"Deals": _FakeWorksheet([["ID"]])})
    client = SheetsClient(sleep=lambda _: None)
    client.use_spreadsheet(spreadsheet)

    client.read_all_values("Deals")
    client.read_row("Deals", 1)

    assert spreadsheet.lookups == 1
    assert client.get_read_calls_count() == 2
    with pytest.raises(SheetsNotFoundError):
        client.get_worksheet("Persons")


def test_get_worksheet_sin_spreadsheet_falla() -> None:
    with pytest.raises(RuntimeError):
        SheetsClient().get_worksheet("Deals")


def test_escritura_reintenta_con_backoff() -> None:
    worksheet = _FakeWorksheet(write_failures=2)
    sleep_calls: list[float] = []
    client = SheetsClient(sleep=sleep_calls.append)
    client.use_spreadsheet(_FakeSpreadsheet({"Deals": worksheet}))

    client.update_cell("Deals", 3, 6, "Synced")

    assert worksheet.cells == [(3, 6, "Synced")]
    assert sleep_calls == [1, 2]
    assert client.get_write_calls_count() == 1


def test_replace_data_rows_limpia_y_escribe_desde_a2() -> None:
    worksheet = _FakeWorksheet()
    client = SheetsClient(sleep=lambda _: None)
    client.use_spreadsheet(_FakeSpreadsheet({"Deals": worksheet}))

    client.replace_data_rows("Deals", [["1", "Deal A"]], 28)
    client.replace_data_rows("Deals", [], 3)

    assert worksheet.cleared == [["A2:AB"], ["A2:C"]]
    assert worksheet.updates == [("A2", [["1", "Deal A"]], "USER_ENTERED")]
