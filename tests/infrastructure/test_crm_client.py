from __future__ import annotations

import pytest
import requests

from crmsync.core.errors import ExternalServiceError
from crmsync.domain.errors import CrmApiError, CrmAuthError, CrmRateLimitError
from crmsync.domain.models import FieldOption
from crmsync.infrastructure.crm_client import CrmClient, build_base_url, parse_field_definition, pick_search_match
from crmsync.infrastructure.crm_errors import classify_http_error, error_text, is_retryable_status

HASH = "e" * 40


class _FakeResponse:
    def __init__(self, status_code: int = 200, body=None, headers=None, text: str = "") -> None:
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("sin json")
        return self._body


class _FakeSession:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.requests = []

    def request(self, **kwargs):
        self.requests.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(responses, sleep_calls=None) -> tuple[CrmClient, _FakeSession]:
    session = _FakeSession(responses)
    sleeper = sleep_calls.append if sleep_calls is not None else (lambda _: None)
    return CrmClient("acme", "token-123", session=session, sleep=sleeper, max_retries=2), session


def test_build_base_url() -> None:
    assert build_base_url("acme") == "https://acme.pipedrive.com/api/v1"
    assert build_base_url("") == "https://api.pipedrive.com/api/v1"


def test_fetch_records_pagina_hasta_el_final() -> None:
    client, session = _client(
        [
            _FakeResponse(
                body={
                    "data": [{"id": 1}, {"id": 2}],
                    "additional_data": {"pagination": {"more_items_in_collection": True, "next_start": 2}},
                }
            ),
            _FakeResponse(body={"data": [{"id": 3}], "additional_data": {"pagination": {"more_items_in_collection": False}}}),
        ]
    )

    records = client.fetch_records("deals", filter_id="42")

    assert [record["id"] for record in records] == [1, 2, 3]
    assert session.requests[0]["url"] == "https://acme.pipedrive.com/api/v1/deals"
    assert session.requests[0]["params"] == {"start": 0, "limit": 500, "filter_id": "42"}
    assert session.requests[1]["params"]["start"] == 2
    assert session.requests[0]["headers"]["Authorization"] == "Bearer token-123"


def test_update_record_leads_usa_patch_y_aplana_custom_fields() -> None:
    client, session = _client([_FakeResponse(body={"success": True, "data": {"id": "abc"}})])

    result = client.update_record("leads", "abc", {"title": "Lead", "custom_fields": {HASH: "x"}})

    assert result.success
    assert result.data == {"id": "abc"}
    assert session.requests[0]["method"] == "PATCH"
    assert session.requests[0]["url"].endswith("/leads/abc")
    assert session.requests[0]["json"] == {"title": "Lead", HASH: "x"}


def test_update_record_deals_usa_put_y_anida_custom_fields() -> None:
    client, session = _client([_FakeResponse(body={"success": True, "data": {"id": 1}})])

    client.update_record("deals", "1", {"title": "Deal", "custom_fields": {HASH: "x"}})

    assert session.requests[0]["method"] == "PUT"
    assert session.requests[0]["json"] == {"title": "Deal", "custom_fields": {HASH: "x"}}


def test_update_record_error_http_devuelve_resultado() -> None:
    body = {"success": False, "error": "Bad value", "error_info": "Check docs"}
    client, _ = _client([_FakeResponse(400, body)])

    result = client.update_record("deals", "1", {"title": "x"})

    assert not result.success
    assert result.status_code == 400
    assert result.error == body


def test_update_record_cuerpo_con_success_false_es_fallo() -> None:
    client, _ = _client([_FakeResponse(200, {"success": False, "error": "No permitido"})])

    assert client.update_record("deals", "1", {"title": "x"}).success is False


def test_update_record_error_de_transporte_lanza() -> None:
    client, _ = _client([requests.ConnectionError("sin red")])

    with pytest.raises(ExternalServiceError):
        client.update_record("deals", "1", {"title": "x"})


def test_reintenta_429_respetando_retry_after() -> None:
    sleep_calls: list[float] = []
    client, session = _client(
        [
            _FakeResponse(429, {"error": "Too many"}, headers={"Retry-After": "2"}),
            _FakeResponse(503, None, text="unavailable"),
            _FakeResponse(body={"success": True, "data": []}),
        ],
        sleep_calls,
    )

    assert client.fetch_records("persons") == []
    assert len(session.requests) == 3
    assert sleep_calls[0] == 2.0
    assert sleep_calls[1] == pytest.approx(1.6 * 1.15)


def test_reintentos_agotados_clasifican_el_error() -> None:
    client, session = _client([_FakeResponse(429, {"error": "Too many"}) for _ in range(3)])

    with pytest.raises(CrmRateLimitError):
        client.fetch_records("deals")

    assert len(session.requests) == 3


def test_token_invalido_es_error_de_autenticacion() -> None:
    client, _ = _client([_FakeResponse(401, {"error": "unauthorized"})])

    with pytest.raises(CrmAuthError):
        client.get_field_definitions("deals")


def test_get_field_definitions_usa_endpoint_del_tipo() -> None:
    client, session = _client(
        [
            _FakeResponse(
                body={
                    "data": [
                        {"key": "stage_id", "name": "Stage", "field_type": "enum", "options": [{"id": 7, "label": "High"}]},
                        {"key": "", "name": "Sin clave"},
                    ]
                }
            )
        ]
    )

    definitions = client.get_field_definitions("persons")

    assert session.requests[0]["url"].endswith("/personFields")
    assert list(definitions) == ["stage_id"]
    assert definitions["stage_id"].options == (FieldOption(7, "High"),)


def test_search_entity_id_por_coleccion() -> None:
    client, session = _client(
        [
            _FakeResponse(body={"data": {"items": [{"item": {"id": 3, "name": "Acme Ltd"}}, {"item": {"id": 9, "name": "acme"}}]}}),
            _FakeResponse(body={"data": [{"id": 12, "name": "Jane"}]}),
        ]
    )

    assert client.search_entity_id("organizations", "Acme") == 9
    assert client.search_entity_id("users", "Unknown") == 12
    assert session.requests[0]["url"].endswith("/organizations/search")
    assert session.requests[1]["url"].endswith("/users/find")
    assert client.search_entity_id("persons", "  ") is None


def test_helpers_de_errores_y_busqueda() -> None:
    assert pick_search_match([], "x") is None
    assert pick_search_match([{"id": 4, "name": "Other"}], "x") == 4
    assert parse_field_definition({"key": "title"}).options == ()
    assert is_retryable_status(502)
    assert not is_retryable_status(404)
    assert error_text({"error": "Bad", "error_info": "Docs"}) == "Bad - Docs"
    assert error_text(None, " texto ") == "texto"
    error = classify_http_error(404, None, "")
    assert isinstance(error, CrmApiError)
    assert error.status_code == 404
    assert "HTTP 404" in str(error)
