"""
Tests para utilidades comunes

- Validación de identificaciones ecuatorianas (cédula, RUC, consumidor final)
- Emails utilizables para envío automático
- Redondeo monetario
- Cliente HTTP hacia el backend (envoltorio {success, data} y errores)
- Exportación CSV
"""

from decimal import Decimal

import pytest
import requests

from pos_billing.common.backend_client import BackendClient, BillingAPIError, extract_error_message
from pos_billing.common.csv_export import build_csv, format_csv_value
from pos_billing.common.mixins import money
from pos_billing.common.validators import (
    ID_CEDULA, ID_FINAL_CONSUMER, ID_PASSPORT, ID_RUC, ID_UNKNOWN,
    is_deliverable_email, is_final_consumer, validate_ecuador_identification
)


class DummyResponse:
    def __init__(self, status_code=200, payload=None, content_type="application/json"):
        self.status_code = status_code
        self._payload = payload
        self.headers = {"content-type": content_type}

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class DummySession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append({
            "method": method, "url": url, "params": params,
            "json": json, "headers": headers, "timeout": timeout
        })
        if self.error:
            raise self.error
        return self.response


def make_client(response=None, error=None, token=None):
    session = DummySession(response, error)
    return BackendClient(base_url="http://backend.test/api/", timeout=5, token=token, session=session), session


# ===== VALIDADORES =====

class TestIdentificationValidation:
    """Tests de validación de identificaciones"""

    @pytest.mark.parametrize(
        "identification, expected_type",
        [
            ("1710034065", ID_CEDULA),
            ("1710034065001", ID_RUC),
            ("1790012344001", ID_RUC),
            ("9999999999999", ID_FINAL_CONSUMER),
            ("AB123456", ID_PASSPORT),
        ],
    )
    def test_valid_identifications(self, identification, expected_type):
        """Identificaciones válidas se clasifican correctamente"""
        result = validate_ecuador_identification(identification)
        assert result.is_valid is True
        assert result.type == expected_type

    @pytest.mark.parametrize("identification", ["1710034066", "", "5010034065", "1710034065000"])
    def test_invalid_identifications(self, identification):
        """Dígito verificador, provincia o establecimiento inválidos"""
        result = validate_ecuador_identification(identification)
        assert result.is_valid is False
        assert result.type == ID_UNKNOWN

    def test_final_consumer_detection(self):
        assert is_final_consumer("9999999999999") is True
        assert is_final_consumer(" 9999999999999 ") is True
        assert is_final_consumer("1710034065") is False
        assert is_final_consumer(None) is False


class TestDeliverableEmail:
    """Tests de emails utilizables para envío automático"""

    @pytest.mark.parametrize("email", ["cliente@example.com", "Ventas@Restaurante.EC"])
    def test_usable_emails(self, email):
        assert is_deliverable_email(email) is True

    @pytest.mark.parametrize(
        "email",
        ["", None, "sin-arroba.com", "cliente@dominio", "noemail@example.com", "consumidor@final.com"],
    )
    def test_unusable_emails(self, email):
        assert is_deliverable_email(email) is False


class TestMoney:
    def test_rounds_half_up(self):
        assert money("2.345") == Decimal("2.35")
        assert money(Decimal("57.5")) == Decimal("57.50")
        assert money(0) == Decimal("0.00")


# ===== CLIENTE HTTP =====

class TestBackendClient:
    """Tests del cliente HTTP hacia el backend"""

    def test_unwraps_success_envelope(self):
        """{success: true, data} devuelve solo data"""
        client, session = make_client(DummyResponse(200, {"success": True, "data": {"name": "RestoAI"}}))
        assert client.get("/config") == {"name": "RestoAI"}
        assert session.calls[0]["method"] == "GET"
        assert session.calls[0]["url"] == "http://backend.test/api/config"
        assert session.calls[0]["timeout"] == 5

    def test_paginated_envelope_keeps_pagination(self):
        payload = {"success": True, "data": [{"id": 1}], "pagination": {"page": 2, "total": 41}}
        client, _ = make_client(DummyResponse(200, payload))
        assert client.get("/bills") == {"data": [{"id": 1}], "pagination": {"page": 2, "total": 41}}

    def test_plain_payload_is_returned_as_is(self):
        payload = {"success": True, "invoiceId": "000000010", "accessKey": "123"}
        client, _ = make_client(DummyResponse(200, payload))
        assert client.post("/billing/generate-xml", {}) == payload

    def test_bearer_token_forwarded(self):
        client, session = make_client(DummyResponse(200, {"success": True, "data": {}}), token="service")
        operator = client.with_token("operator-token")
        operator.get("/config")
        assert session.calls[0]["headers"]["Authorization"] == "Bearer operator-token"

    def test_with_token_without_token_returns_same_client(self):
        client, _ = make_client(token="service")
        assert client.with_token(None) is client
        assert client.with_token("service") is client

    def test_error_envelope_message_preserved(self):
        """El mensaje del backend se conserva literalmente"""
        payload = {
            "success": False,
            "error": {"code": "VALIDATION_ERROR", "message": "RUC del emisor no registrado en el SRI", "details": ["ruc"]},
        }
        client, _ = make_client(DummyResponse(400, payload))

        with pytest.raises(BillingAPIError) as exc_info:
            client.post("/credit-notes", {})

        assert exc_info.value.message == "RUC del emisor no registrado en el SRI"
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "VALIDATION_ERROR"
        assert exc_info.value.details == ["ruc"]

    def test_success_false_with_200_raises(self):
        payload = {"success": False, "error": "Factura no encontrada en base de datos local."}
        client, _ = make_client(DummyResponse(200, payload))

        with pytest.raises(BillingAPIError) as exc_info:
            client.post("/billing/check-status/123", {})

        assert str(exc_info.value) == "Factura no encontrada en base de datos local."

    def test_error_without_message_uses_status(self):
        client, _ = make_client(DummyResponse(500, {}))
        with pytest.raises(BillingAPIError) as exc_info:
            client.get("/bills")
        assert exc_info.value.message == "HTTP error! status: 500"

    def test_non_json_response(self):
        client, _ = make_client(DummyResponse(502, "<html>Bad Gateway</html>", content_type="text/html"))
        with pytest.raises(BillingAPIError) as exc_info:
            client.get("/config")
        assert exc_info.value.message == "Respuesta no es JSON"
        assert exc_info.value.status_code == 502

    def test_invalid_json_body(self):
        client, _ = make_client(DummyResponse(200, ValueError("bad json")))
        with pytest.raises(BillingAPIError) as exc_info:
            client.get("/config")
        assert exc_info.value.message == "Respuesta JSON inválida"

    def test_timeout_becomes_billing_error(self):
        client, _ = make_client(error=requests.Timeout("read timed out"))
        with pytest.raises(BillingAPIError) as exc_info:
            client.post("/billing/generate-xml", {})
        assert "no respondió a tiempo" in exc_info.value.message

    def test_connection_error_becomes_billing_error(self):
        client, _ = make_client(error=requests.ConnectionError("refused"))
        with pytest.raises(BillingAPIError) as exc_info:
            client.get("/config")
        assert "No se pudo conectar" in exc_info.value.message

    def test_extract_error_message_variants(self):
        assert extract_error_message({"error": {"message": "A"}}, 400) == "A"
        assert extract_error_message({"error": "B"}, 400) == "B"
        assert extract_error_message({"message": "C"}, 400) == "C"
        assert extract_error_message(["x"], 418) == "HTTP error! status: 418"


# ===== CSV =====

class TestCsvExport:
    def test_build_csv_uses_header_labels_and_order(self):
        content = build_csv(
            [{"b": Decimal("1.5"), "a": None, "extra": "ignored"}],
            {"a": "Columna A", "b": "Columna B"}
        )
        lines = content.strip().split("\n")
        assert lines[0] == "Columna A,Columna B"
        assert lines[1] == ",1.50"

    def test_format_csv_value(self):
        assert format_csv_value(True) == "Sí"
        assert format_csv_value(Decimal("7.5")) == "7.50"
        assert format_csv_value(None) == ""
