"""
Tests para el módulo de Facturación Electrónica

- Desglose de IVA con precios que ya incluyen el impuesto
- Validación del cliente antes de cualquier llamada de red
- Máquina de estados del proceso de emisión
- Clasificación de respuestas del SRI (mensajes literales)
- Emisión, verificación de estado y bloqueo de operaciones concurrentes
- Notas de crédito: elegibilidad local y descripción compuesta
- Historial, exportación CSV, reseteo y RIDE
"""

from decimal import Decimal

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from pos_billing.common.backend_client import BackendClient
from pos_billing.core.config import settings
from pos_billing.dependencies.backendDependencies import (
    get_config_synchronizer, get_inflight_guard, get_operator_backend, get_process_registry
)
from pos_billing.main import app
from pos_billing.modules.billing.calculator import calculate_tax_breakdown
from pos_billing.modules.billing.client import BillingClient
from pos_billing.modules.billing.ride import RideRenderer
from pos_billing.modules.billing.schemas import (
    Bill, ClientData, CreditNoteCreate, CreditNoteReason, InvoiceRequest, RideRequest, StatusCheckRequest
)
from pos_billing.modules.billing.service import (
    NO_EMAIL_WARNING, BillingHistoryService, CreditNoteIssuer, InFlightGuard, InvoiceIssuer,
    ProcessRegistry, bill_key, classify_response, order_key, validate_client
)
from pos_billing.modules.billing.state import BillingProcess, InvalidTransition, InvoiceProcessState
from pos_billing.modules.orders.schemas import Order
from pos_billing.modules.settings.cache import ConfigCache
from pos_billing.modules.settings.client import ConfigClient
from pos_billing.modules.settings.service import ConfigSynchronizer, normalize_document_number


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = {"content-type": "application/json"}

    def json(self):
        return self._payload


class DummySession:
    """Responde según (método, ruta); registra cada llamada"""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = url.split("/api", 1)[-1]
        self.calls.append({"method": method, "path": path, "params": params, "json": json})
        route = self.routes.get((method, path))
        if route is None:
            return DummyResponse(503, {"success": False, "error": {"message": "Servicio no disponible"}})
        if callable(route):
            return route(json)
        return route

    def calls_to(self, method, path):
        return [call for call in self.calls if call["method"] == method and call["path"] == path]


ACCESS_KEY = "1610202601179001234400120010020000001241234567811"

BACKEND_CONFIG = {
    "name": "La Huequita",
    "ruc": "1790012344001",
    "businessName": "La Huequita S.A.",
    "fiscalEmail": "facturas@lahuequita.ec",
    "address": "Av. Amazonas N34-12",
    "billing": {
        "establishment": "1",
        "emissionPoint": "2",
        "currentSequenceFactura": 123,
        "currentSequenceNotaCredito": 7,
        "taxRate": 15,
        "environment": "1",
    },
}

AUTHORIZED_RESPONSE = {
    "success": True,
    "invoiceId": 124,
    "accessKey": ACCESS_KEY,
    "sriResponse": {"estado": "RECIBIDA"},
    "authorization": {
        "estado": "AUTORIZADO",
        "fechaAutorizacion": "2026-10-16T10:15:00-05:00",
        "numeroAutorizacion": ACCESS_KEY,
    },
}

RECEIVED_RESPONSE = {
    "success": True,
    "invoiceId": "124",
    "accessKey": ACCESS_KEY,
    "sriResponse": {"estado": "RECIBIDA"},
}


# ===== FIXTURES =====

@pytest.fixture
def order_data():
    return {
        "id": "ord-1",
        "customerName": "Juan Pérez",
        "status": "Completado",
        "items": [{"name": "Encebollado", "quantity": 2, "price": 28.75}],
    }


@pytest.fixture
def client_data():
    return {"identification": "1710034065", "name": "Juan Pérez", "email": "juan@correo.ec"}


@pytest.fixture
def authorized_bill_data():
    return {
        "id": 42,
        "documentNumber": "001-002-000000124",
        "orderId": "ord-1",
        "date": "2026-10-16",
        "customerName": "Juan Pérez",
        "customerIdentification": "1710034065",
        "items": [{"name": "Encebollado", "quantity": 2, "price": 28.75, "total": 57.5}],
        "subtotal": 50,
        "tax": 7.5,
        "total": 57.5,
        "accessKey": ACCESS_KEY,
        "sriStatus": "AUTORIZADO",
        "hasCreditNote": False,
    }


@pytest.fixture
def session():
    return DummySession({
        ("GET", "/config"): DummyResponse(200, {"success": True, "data": BACKEND_CONFIG}),
        ("POST", "/billing/generate-xml"): DummyResponse(200, AUTHORIZED_RESPONSE),
    })


@pytest.fixture
def backend(session):
    return BackendClient(base_url="http://backend.test/api", timeout=5, session=session)


@pytest.fixture
def synchronizer(backend):
    return ConfigSynchronizer(ConfigClient(backend), ConfigCache())


@pytest.fixture
def issuer(backend, synchronizer):
    return InvoiceIssuer(BillingClient(backend), synchronizer, InFlightGuard(), ProcessRegistry())


@pytest.fixture
def credit_note_issuer(backend, synchronizer):
    return CreditNoteIssuer(BillingClient(backend), synchronizer, InFlightGuard())


@pytest.fixture
def history(backend, synchronizer):
    return BillingHistoryService(BillingClient(backend), synchronizer)


@pytest.fixture
def api_client(backend, synchronizer):
    guard = InFlightGuard()
    registry = ProcessRegistry()
    app.dependency_overrides[get_operator_backend] = lambda: backend
    app.dependency_overrides[get_config_synchronizer] = lambda: synchronizer
    app.dependency_overrides[get_inflight_guard] = lambda: guard
    app.dependency_overrides[get_process_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def invoice_request(order_data, client_data, **kwargs):
    return InvoiceRequest(
        order=Order.model_validate(order_data),
        client=ClientData.model_validate(client_data),
        **kwargs
    )


# ===== CÁLCULO DE IVA =====

class TestTaxBreakdown:
    """Tests del desglose de IVA incluido en el precio"""

    @pytest.mark.parametrize(
        "total, rate, subtotal, tax",
        [
            ("57.50", 15, "50.00", "7.50"),
            ("11.20", 12, "10.00", "1.20"),
            ("10.00", 0, "10.00", "0.00"),
            ("0", 15, "0.00", "0.00"),
        ],
    )
    def test_breakdown(self, total, rate, subtotal, tax):
        breakdown = calculate_tax_breakdown(Decimal(total), rate)
        assert breakdown.subtotal == Decimal(subtotal)
        assert breakdown.tax == Decimal(tax)

    @pytest.mark.parametrize("total", ["1.00", "3.33", "19.99", "100.00", "1234.57"])
    def test_subtotal_plus_tax_equals_total(self, total):
        breakdown = calculate_tax_breakdown(Decimal(total), 15)
        assert breakdown.subtotal + breakdown.tax == breakdown.total

    def test_default_rate_is_used_when_missing(self):
        breakdown = calculate_tax_breakdown(Decimal("100.00"))
        assert breakdown.tax_rate == Decimal(str(settings.DEFAULT_TAX_RATE))

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            calculate_tax_breakdown(Decimal("10.00"), -1)


# ===== VALIDACIÓN DEL CLIENTE =====

class TestClientValidation:
    """Tests de validación previa a la emisión"""

    def test_missing_identification_and_name_are_errors(self):
        result = validate_client(ClientData(identification="  ", name=""), Decimal("10"))
        assert result.is_valid is False
        assert len(result.errors) == 2

    def test_final_consumer_over_limit_requires_confirmation(self):
        client = ClientData(identification="9999999999999", name="Consumidor Final")

        result = validate_client(client, Decimal("60.00"))

        assert result.is_valid is True
        assert result.requires_confirmation is True
        assert result.warnings[0].startswith("El monto supera $50.00")

    def test_final_consumer_under_limit_has_no_warnings(self):
        client = ClientData(identification="9999999999999", name="Consumidor Final")

        result = validate_client(client, Decimal("40.00"))

        assert result.warnings == []
        assert result.requires_confirmation is False

    def test_identified_client_without_email_requires_confirmation(self):
        result = validate_client(ClientData(identification="1710034065", name="Juan Pérez"), Decimal("10"))
        assert result.warnings == [NO_EMAIL_WARNING]
        assert result.requires_confirmation is True

    def test_invalid_check_digit_is_informational(self):
        client = ClientData(identification="1710034066", name="Juan Pérez", email="juan@correo.ec")

        result = validate_client(client, Decimal("10"))

        assert result.is_valid is True
        assert result.requires_confirmation is False
        assert "dígito verificador" in result.warnings[0]


# ===== MÁQUINA DE ESTADOS =====

class TestBillingProcessStateMachine:
    """Tests de transiciones del proceso de emisión"""

    def walk_to_waiting(self, process):
        for state in (
            InvoiceProcessState.VALIDATING,
            InvoiceProcessState.GENERATING,
            InvoiceProcessState.SIGNING,
            InvoiceProcessState.SENDING,
            InvoiceProcessState.WAITING_AUTHORIZATION,
        ):
            process.transition(state)
        return process

    def test_happy_path(self):
        process = self.walk_to_waiting(BillingProcess())
        process.transition(InvoiceProcessState.AUTHORIZED)

        assert process.is_terminal is True
        assert process.visited[-1] == InvoiceProcessState.AUTHORIZED
        assert len(process.visited) == 6

    def test_cannot_skip_sending(self):
        process = BillingProcess()
        process.transition(InvoiceProcessState.VALIDATING)
        process.transition(InvoiceProcessState.GENERATING)
        process.transition(InvoiceProcessState.SIGNING)

        with pytest.raises(InvalidTransition):
            process.transition(InvoiceProcessState.WAITING_AUTHORIZATION)

    def test_idle_cannot_jump_to_sending(self):
        with pytest.raises(InvalidTransition):
            BillingProcess().transition(InvoiceProcessState.SENDING)

    @pytest.mark.parametrize("terminal", [InvoiceProcessState.AUTHORIZED, InvoiceProcessState.ERROR])
    def test_terminal_states_have_no_exits(self, terminal):
        process = self.walk_to_waiting(BillingProcess())
        process.transition(terminal)

        for target in InvoiceProcessState:
            with pytest.raises(InvalidTransition):
                process.transition(target)

    def test_pending_can_be_checked_again(self):
        process = self.walk_to_waiting(BillingProcess())
        process.transition(InvoiceProcessState.PENDING)

        process.transition(InvoiceProcessState.WAITING_AUTHORIZATION)

        assert process.state == InvoiceProcessState.WAITING_AUTHORIZATION
        with pytest.raises(InvalidTransition):
            BillingProcess.from_pending_bill(ACCESS_KEY).transition(InvoiceProcessState.AUTHORIZED)

    def test_every_processing_state_can_fail(self):
        process = BillingProcess()
        process.transition(InvoiceProcessState.VALIDATING)
        process.transition(InvoiceProcessState.GENERATING)

        process.fail("Firma electrónica caducada")

        assert process.state == InvoiceProcessState.ERROR
        assert process.message == "Firma electrónica caducada"

    def test_cannot_close_while_processing(self):
        process = BillingProcess()
        assert process.can_close is True

        process.transition(InvoiceProcessState.VALIDATING)
        assert process.is_processing is True
        assert process.can_close is False

        pending =BillingProcess.from_pending_bill(ACCESS_KEY)
        assert pending.can_close is True

    def test_listener_sees_each_transition(self):
        seen = []
        process = BillingProcess(on_transition=lambda p: seen.append(p.state))

        self.walk_to_waiting(process)

        assert seen == process.visited


# ===== CLASIFICACIÓN DE RESPUESTAS =====

class TestClassifyResponse:
    """Tests de la traducción de respuestas SRI a estados"""

    def test_authorization_has_priority(self):
        verdict = classify_response(AUTHORIZED_RESPONSE)

        assert verdict.state == InvoiceProcessState.AUTHORIZED
        assert verdict.authorization_date == "2026-10-16T10:15:00-05:00"
        assert verdict.access_key == ACCESS_KEY
        assert verdict.invoice_id == "124"

    def test_nested_auth_result(self):
        payload = {"success": True, "sriResponse": {"estado": "RECIBIDA", "authResult": {"estado": "AUTORIZADO"}}}
        assert classify_response(payload).state == InvoiceProcessState.AUTHORIZED

    @pytest.mark.parametrize("estado", ["RECIBIDA", "EN PROCESO", "desconocido"])
    def test_pending_statuses(self, estado):
        payload = {"success": True, "sriResponse": {"estado": estado}}
        assert classify_response(payload).state == InvoiceProcessState.PENDING

    def test_success_without_status_is_pending(self):
        assert classify_response({"success": True}).state == InvoiceProcessState.PENDING

    def test_returned_keeps_sri_messages_verbatim(self):
        payload = {
            "success": True,
            "sriResponse": {
                "estado": "DEVUELTA",
                "mensajes": [{
                    "identificador": "45",
                    "mensaje": "ERROR SECUENCIAL REGISTRADO",
                    "informacionAdicional": "La clave de acceso ya fue registrada",
                }],
            },
        }

        verdict = classify_response(payload)

        assert verdict.state == InvoiceProcessState.ERROR
        assert verdict.message == "[45] ERROR SECUENCIAL REGISTRADO: La clave de acceso ya fue registrada"
        assert verdict.sri_status == "DEVUELTA"

    def test_not_authorized_without_messages(self):
        verdict = classify_response({"success": True, "authorization": {"estado": "NO AUTORIZADO"}})
        assert verdict.state == InvoiceProcessState.ERROR
        assert verdict.message == "El SRI respondió NO AUTORIZADO"

    def test_unsuccessful_response_is_error(self):
        verdict = classify_response({"success": False, "error": "Certificado de firma vencido"})
        assert verdict.state == InvoiceProcessState.ERROR
        assert verdict.message == "Certificado de firma vencido"

    def test_unexpected_payload(self):
        assert classify_response(["no", "es", "dict"]).state == InvoiceProcessState.ERROR


# ===== EMISIÓN =====

class TestInvoiceIssuer:
    """Tests de la emisión de facturas"""

    def test_authorized_issuance(self, issuer, session, order_data, client_data):
        pending = []

        result = issuer.issue(invoice_request(order_data, client_data), runner=pending.append)

        assert result.state == InvoiceProcessState.AUTHORIZED
        assert result.access_key == ACCESS_KEY
        assert result.invoice_id == "124"
        assert result.invoice_number == "001-002-000000124"
        assert result.breakdown.subtotal == Decimal("50.00")
        assert result.breakdown.tax == Decimal("7.50")
        assert result.history == [
            InvoiceProcessState.VALIDATING,
            InvoiceProcessState.GENERATING,
            InvoiceProcessState.SIGNING,
            InvoiceProcessState.SENDING,
            InvoiceProcessState.WAITING_AUTHORIZATION,
            InvoiceProcessState.AUTHORIZED,
        ]
        assert result.can_close is True

        payload = session.calls_to("POST", "/billing/generate-xml")[0]["json"]
        assert payload["order"]["items"][0]["price"] == 28.75
        assert payload["client"]["identification"] == "1710034065"
        assert payload["taxRate"] == 15.0

        # Secuencial consumido: refresco programado
        assert len(pending) == 1
        assert issuer.synchronizer.is_refreshing is True

    def test_pending_issuance_also_refreshes(self, issuer, session, order_data, client_data):
        session.routes[("POST", "/billing/generate-xml")] = DummyResponse(200, RECEIVED_RESPONSE)
        pending = []

        result = issuer.issue(invoice_request(order_data, client_data), runner=pending.append)

        assert result.state == InvoiceProcessState.PENDING
        assert result.access_key == ACCESS_KEY
        assert len(pending) == 1

    def test_collaborator_error_message_verbatim(self, issuer, session, order_data, client_data):
        session.routes[("POST", "/billing/generate-xml")] = DummyResponse(
            500, {"success": False, "error": {"message": "No se encontró la firma electrónica (.p12)"}}
        )
        pending = []

        result = issuer.issue(invoice_request(order_data, client_data), runner=pending.append)

        assert result.state == InvoiceProcessState.ERROR
        assert result.message == "No se encontró la firma electrónica (.p12)"
        assert result.history[-2:] == [InvoiceProcessState.SENDING, InvoiceProcessState.ERROR]
        assert pending == []

    def test_unconfirmed_warnings_stop_before_network(self, issuer, session, order_data):
        order_data["items"][0]["quantity"] = 3  # 86.25 > 50.00
        final_consumer = {"identification": "9999999999999", "name": "Consumidor Final"}

        result = issuer.issue(invoice_request(order_data, final_consumer))

        assert result.state == InvoiceProcessState.IDLE
        assert result.warnings
        assert session.calls == []

    def test_confirmed_warnings_proceed(self, issuer, session, order_data):
        order_data["items"][0]["quantity"] = 3
        final_consumer = {"identification": "9999999999999", "name": "Consumidor Final"}

        result = issuer.issue(
            invoice_request(order_data, final_consumer, confirm_warnings=True), runner=lambda task: None
        )

        assert result.state == InvoiceProcessState.AUTHORIZED
        assert len(session.calls_to("POST", "/billing/generate-xml")) == 1

    def test_missing_name_is_rejected_without_network(self, issuer, session, order_data):
        with pytest.raises(HTTPException) as exc_info:
            issuer.issue(invoice_request(order_data, {"identification": "1710034065", "name": ""}))

        assert exc_info.value.status_code == 400
        assert session.calls == []

    def test_empty_or_billed_orders_rejected(self, issuer, session, order_data, client_data):
        with pytest.raises(HTTPException) as exc_info:
            issuer.issue(invoice_request({"id": "ord-2", "items": []}, client_data))
        assert exc_info.value.status_code == 400

        with pytest.raises(HTTPException) as exc_info:
            issuer.issue(invoice_request({**order_data, "billed": True}, client_data))
        assert exc_info.value.status_code == 409
        assert session.calls == []

    @pytest.mark.parametrize("order_status", ["Nuevo", "Listo"])
    def test_unfinished_orders_rejected_without_network(self, issuer, session, order_data, client_data, order_status):
        """Solo los pedidos completados se facturan"""
        with pytest.raises(HTTPException) as exc_info:
            issuer.issue(invoice_request({**order_data, "status": order_status}, client_data))

        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Solo se pueden facturar pedidos completados"
        assert session.calls == []
        assert issuer.guard.is_busy(order_key("ord-1")) is False

    def test_in_flight_issuance_conflicts(self, issuer, session, order_data, client_data):
        with issuer.guard.hold(order_key("ord-1")):
            with pytest.raises(HTTPException) as exc_info:
                issuer.issue(invoice_request(order_data, client_data))

        assert exc_info.value.status_code == 409
        assert session.calls == []
        assert issuer.guard.is_busy(order_key("ord-1")) is False

    def test_next_issuance_waits_for_refresh(self, issuer, monkeypatch, order_data, client_data):
        monkeypatch.setattr(settings, "CONFIG_REFRESH_TIMEOUT", 0)
        pending = []
        issuer.issue(invoice_request(order_data, client_data), runner=pending.append)

        with pytest.raises(HTTPException) as exc_info:
            issuer.issue(invoice_request({**order_data, "id": "ord-2"}, client_data))
        assert exc_info.value.status_code == 409

        pending[0]()
        result = issuer.issue(invoice_request({**order_data, "id": "ord-2"}, client_data), runner=pending.append)
        assert result.state == InvoiceProcessState.AUTHORIZED

    def test_process_is_tracked(self, issuer, order_data, client_data):
        issuer.issue(invoice_request(order_data, client_data), runner=lambda task: None)

        assert issuer.get_process("ord-1").state == InvoiceProcessState.AUTHORIZED
        with pytest.raises(HTTPException) as exc_info:
            issuer.get_process("ord-unknown")
        assert exc_info.value.status_code == 404


class TestStatusCheck:
    """Tests de verificación de estado de facturas del historial"""

    def test_pending_bill_becomes_authorized(self, issuer, session, authorized_bill_data):
        session.routes[("POST", f"/billing/check-status/{ACCESS_KEY}")] = DummyResponse(
            200, {"success": True, "authorization": {"estado": "AUTORIZADO", "fechaAutorizacion": "2026-10-16"}}
        )
        bill = Bill.model_validate({**authorized_bill_data, "sriStatus": "RECIBIDA"})

        result = issuer.check_status(StatusCheckRequest(bill=bill))

        assert result.state == InvoiceProcessState.AUTHORIZED
        assert result.history == [
            InvoiceProcessState.PENDING,
            InvoiceProcessState.WAITING_AUTHORIZATION,
            InvoiceProcessState.AUTHORIZED,
        ]
        assert result.target_id == "42"

    def test_check_failure_keeps_backend_message(self, issuer, session, authorized_bill_data):
        session.routes[("POST", f"/billing/check-status/{ACCESS_KEY}")] = DummyResponse(
            200, {"success": False, "error": "Factura no encontrada en base de datos local."}
        )
        bill = Bill.model_validate({**authorized_bill_data, "sriStatus": "RECIBIDA"})

        result = issuer.check_status(StatusCheckRequest(bill=bill))

        assert result.state == InvoiceProcessState.ERROR
        assert result.message == "Factura no encontrada en base de datos local."

    def test_bill_without_access_key_is_resubmitted(self, issuer, session, authorized_bill_data):
        bill = Bill.model_validate({
            **authorized_bill_data, "accessKey": None, "sriStatus": "ERROR",
            "items": [{"name": "Encebollado", "quantity": 2, "price": 6.5, "total": 13.0}],
        })

        result = issuer.check_status(StatusCheckRequest(bill=bill), runner=lambda task: None)

        assert result.state == InvoiceProcessState.AUTHORIZED
        payload = session.calls_to("POST", "/billing/generate-xml")[0]["json"]
        assert payload["order"]["items"][0]["price"] == 6.5
        assert "orderNumber" not in payload["order"]
        assert payload["client"]["email"] == "facturas@lahuequita.ec"
        assert issuer.get_process("42").state == InvoiceProcessState.AUTHORIZED

    @pytest.mark.parametrize("overrides", [{"sriStatus": "AUTORIZADO"}, {"hasCreditNote": True, "sriStatus": "RECIBIDA"}])
    def test_final_bills_are_not_checked(self, issuer, session, authorized_bill_data, overrides):
        bill = Bill.model_validate({**authorized_bill_data, **overrides})

        with pytest.raises(HTTPException) as exc_info:
            issuer.check_status(StatusCheckRequest(bill=bill))

        assert exc_info.value.status_code == 409
        assert session.calls == []


# ===== NOTAS DE CRÉDITO =====

class TestCreditNotes:
    """Tests de emisión de notas de crédito"""

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"hasCreditNote": True}, "La factura ya tiene una nota de crédito"),
            ({"customerIdentification": "9999999999999"}, "No se puede emitir nota de crédito a Consumidor Final"),
            ({"sriStatus": "RECIBIDA"}, "Solo se pueden anular facturas AUTORIZADAS por el SRI"),
        ],
    )
    def test_ineligible_bills_refused_without_network(
        self, credit_note_issuer, session, authorized_bill_data, overrides, reason
    ):
        bill = Bill.model_validate({**authorized_bill_data, **overrides})

        assert credit_note_issuer.eligibility(bill).reason == reason
        with pytest.raises(HTTPException) as exc_info:
            credit_note_issuer.issue(CreditNoteCreate(bill=bill))

        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == reason
        assert session.calls == []

    def test_eligible_bill(self, credit_note_issuer, authorized_bill_data):
        eligibility = credit_note_issuer.eligibility(Bill.model_validate(authorized_bill_data))
        assert eligibility.eligible is True
        assert eligibility.reason is None

    def test_issue_with_custom_description(self, credit_note_issuer, session, authorized_bill_data):
        session.routes[("POST", "/credit-notes")] = DummyResponse(201, {"success": True, "data": {"id": 8}})
        request = CreditNoteCreate(
            bill=Bill.model_validate(authorized_bill_data),
            reason=CreditNoteReason.RETURN_OF_GOODS,
            custom_description="  Cliente devolvió el plato  "
        )

        result = credit_note_issuer.issue(request)

        payload = session.calls_to("POST", "/credit-notes")[0]["json"]
        assert payload == {
            "billId": "42",
            "reason": "01",
            "taxRate": 15.0,
            "customDescription": "Devolución de mercancías - Cliente devolvió el plato",
        }
        assert result.description == "Devolución de mercancías - Cliente devolvió el plato"
        assert result.message == "Nota de crédito generada y enviada al SRI exitosamente"
        # Refresco en línea del secuencial de notas de crédito
        assert session.calls[-1]["path"] == "/config"

    def test_issue_without_description_uses_reason_label(self, credit_note_issuer, session, authorized_bill_data):
        session.routes[("POST", "/credit-notes")] = DummyResponse(201, {"success": True, "data": {"id": 8}})

        result = credit_note_issuer.issue(CreditNoteCreate(bill=Bill.model_validate(authorized_bill_data)))

        payload = session.calls_to("POST", "/credit-notes")[0]["json"]
        assert "customDescription" not in payload
        assert payload["reason"] == "03"
        assert result.description == "Devolución por comprobante anulado"

    def test_backend_failure_is_not_retried(self, credit_note_issuer, session, authorized_bill_data):
        session.routes[("POST", "/credit-notes")] = DummyResponse(
            400, {"success": False, "error": {"message": "La factura no existe en el SRI"}}
        )

        with pytest.raises(HTTPException) as exc_info:
            credit_note_issuer.issue(CreditNoteCreate(bill=Bill.model_validate(authorized_bill_data)))

        assert exc_info.value.status_code == 502
        assert exc_info.value.detail == "La factura no existe en el SRI"
        assert len(session.calls_to("POST", "/credit-notes")) == 1
        assert credit_note_issuer.guard.is_busy(bill_key("42")) is False

    def test_issue_waits_for_pending_refresh(
        self, credit_note_issuer, session, monkeypatch, authorized_bill_data
    ):
        """Con un refresco de configuración en curso la nota de crédito se rechaza sin tocar el backend"""
        monkeypatch.setattr(settings, "CONFIG_REFRESH_TIMEOUT", 0)
        session.routes[("POST", "/credit-notes")] = DummyResponse(201, {"success": True, "data": {"id": 8}})
        pending = []
        credit_note_issuer.synchronizer.schedule_refresh(pending.append)

        with pytest.raises(HTTPException) as exc_info:
            credit_note_issuer.issue(CreditNoteCreate(bill=Bill.model_validate(authorized_bill_data)))

        assert exc_info.value.status_code == 409
        assert session.calls_to("POST", "/credit-notes") == []
        assert credit_note_issuer.guard.is_busy(bill_key("42")) is False

        pending[0]()
        credit_note_issuer.issue(CreditNoteCreate(bill=Bill.model_validate(authorized_bill_data)))
        assert len(session.calls_to("POST", "/credit-notes")) == 1

    def test_list_credit_notes(self, credit_note_issuer, session):
        session.routes[("GET", "/credit-notes")] = DummyResponse(200, {
            "success": True,
            "data": [{"id": 8, "billId": 42, "reason": "01", "total": 57.5}],
            "pagination": {"page": 1, "total": 1},
        })

        result = credit_note_issuer.list_credit_notes(bill_id="42")

        assert result.total == 1
        assert result.credit_notes[0].bill_id == "42"
        assert session.calls[0]["params"] == {"page": 1, "limit": 20, "billId": "42"}


# ===== HISTORIAL =====

class TestBillingHistory:
    """Tests del historial, exportación y reseteo"""

    @pytest.mark.parametrize(
        "sri_status, has_credit_note, expected",
        [
            ("AUTORIZADO", False, "AUTORIZADO"),
            ("autorizado", True, "ANULADO (NC)"),
            ("CANCELLED", False, "ANULADO (NC)"),
            ("RECIBIDA", False, "PROCESANDO"),
            ("DEVUELTA", False, "DEVUELTA"),
            (None, False, "UNKNOWN"),
        ],
    )
    def test_display_status(self, sri_status, has_credit_note, expected):
        bill = Bill(id="1", sri_status=sri_status, has_credit_note=has_credit_note)
        assert bill.display_status == expected

    def test_list_bills_with_pagination(self, history, session, authorized_bill_data):
        session.routes[("GET", "/bills")] = DummyResponse(200, {
            "success": True,
            "data": [authorized_bill_data, {**authorized_bill_data, "id": 43, "sriStatus": "RECIBIDA"}],
            "pagination": {"page": 2, "total": 52},
        })

        result = history.list_bills(page=2, customer_identification="1710034065")

        assert result.total == 52
        assert result.page == 2
        assert [bill.status_label for bill in result.bills] == ["AUTORIZADO", "PROCESANDO"]
        assert session.calls[0]["params"]["customerIdentification"] == "1710034065"
        assert "documentNumber" not in session.calls[0]["params"]

    def test_export_csv(self, history, authorized_bill_data):
        bills = [
            Bill.model_validate(authorized_bill_data),
            Bill.model_validate({**authorized_bill_data, "id": 43, "sriStatus": None, "accessKey": None}),
        ]

        lines = history.export_csv(bills).strip().split("\n")

        assert lines[0] == "Fecha,Numero,Cliente,RUC/CI,Subtotal,IVA,Total,SRI Status,Clave Acceso"
        assert lines[1] == f"2026-10-16,001-002-000000124,Juan Pérez,1710034065,50.00,7.50,57.50,AUTORIZADO,'{ACCESS_KEY}"
        assert lines[2].endswith(",PENDIENTE,'")

    def test_export_filename(self, history):
        filename = history.export_filename()
        assert filename.startswith("Facturacion_")
        assert filename.endswith(".csv")

    def test_reset_requires_exact_phrase(self, history, session):
        with pytest.raises(HTTPException) as exc_info:
            history.reset_billing("eliminar todo")

        assert exc_info.value.status_code == 400
        assert session.calls == []

    def test_reset_refreshes_config(self, history, session):
        session.routes[("POST", "/bills/reset")] = DummyResponse(200, {"success": True, "message": "ok"})

        result = history.reset_billing("ELIMINAR TODO")

        assert result.success is True
        assert [call["path"] for call in session.calls] == ["/bills/reset", "/config"]

    def test_reset_survives_invalid_config(self, history, session):
        """Una configuración mal formada del backend no convierte el reseteo en un error"""
        snapshot = history.synchronizer.current()
        session.routes[("POST", "/bills/reset")] = DummyResponse(200, {"success": True, "message": "ok"})
        session.routes[("GET", "/config")] = DummyResponse(
            200, {"success": True, "data": {"billing": {"establishment": "ABCD"}}}
        )

        result = history.reset_billing("ELIMINAR TODO")

        assert result.success is True
        assert history.synchronizer.current() == snapshot
        assert history.synchronizer.is_refreshing is False


# ===== RIDE =====

class TestRide:
    """Tests del RIDE imprimible"""

    def test_render_contains_document_data(self, synchronizer, order_data, client_data):
        request = RideRequest(
            order=Order.model_validate(order_data),
            client=ClientData.model_validate(client_data),
            invoice_number="124",
            access_key=ACCESS_KEY,
        )

        html = RideRenderer().render(request, synchronizer.current())

        assert "001-002-000000124" in html
        assert ACCESS_KEY in html
        assert "Juan Pérez" in html
        assert "$50.00" in html
        assert "$7.50" in html
        assert "$57.50" in html

    def test_document_number_normalization(self, synchronizer):
        config = synchronizer.current()
        assert normalize_document_number(config, "001-001-000000010") == "001-001-000000010"
        assert normalize_document_number(config, "124") == "001-002-000000124"
        assert normalize_document_number(config, None) == ""

    def test_client_defaults_to_final_consumer(self, synchronizer, order_data):
        request = RideRequest(order=Order.model_validate(order_data), client=ClientData())

        context = RideRenderer().build_context(request, synchronizer.current())

        assert context["client"]["identification"] == "9999999999999"
        assert context["client"]["name"] == "CONSUMIDOR FINAL"


# ===== TESTS DE ENDPOINTS =====

class TestBillingEndpoints:
    def test_validate_endpoint(self, api_client, session, order_data):
        response = api_client.post("/billing/validate", json={
            "order": order_data,
            "client": {"identification": "1710034065", "name": "Juan Pérez"},
        })

        assert response.status_code == 200
        assert response.json()["requiresConfirmation"] is True
        assert response.json()["warnings"] == [NO_EMAIL_WARNING]
        assert session.calls == []

    def test_issue_invoice_and_read_process(self, api_client, session, order_data, client_data):
        response = api_client.post("/billing/invoices", json={"order": order_data, "client": client_data})

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "authorized"
        assert data["accessKey"] == ACCESS_KEY
        assert data["canClose"] is True
        # El refresco corre como tarea en segundo plano después de responder
        assert len(session.calls_to("GET", "/config")) == 2

        process = api_client.get("/billing/invoices/ord-1/process")
        assert process.status_code == 200
        assert process.json()["state"] == "authorized"
        assert process.json()["invoiceNumber"] == "001-002-000000124"

    def test_ride_endpoint(self, api_client, order_data, client_data):
        response = api_client.post("/billing/invoices/ord-1/ride", json={
            "order": order_data, "client": client_data, "invoiceNumber": "124",
        })

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "001-002-000000124" in response.text

    def test_ride_endpoint_rejects_mismatched_order(self, api_client, order_data, client_data):
        response = api_client.post("/billing/invoices/ord-9/ride", json={"order": order_data, "client": client_data})
        assert response.status_code == 400

    def test_credit_note_eligibility_endpoint(self, api_client, session, authorized_bill_data):
        response = api_client.post(
            "/billing/bills/credit-note-eligibility",
            json={**authorized_bill_data, "customerIdentification": "9999999999999"}
        )

        assert response.status_code == 200
        assert response.json()["eligible"] is False
        assert response.json()["reason"] == "No se puede emitir nota de crédito a Consumidor Final"
        assert session.calls == []

    def test_create_credit_note_endpoint(self, api_client, session, authorized_bill_data):
        session.routes[("POST", "/credit-notes")] = DummyResponse(201, {"success": True, "data": {"id": 8}})

        response = api_client.post("/billing/credit-notes", json={"bill": authorized_bill_data, "reason": "07"})

        assert response.status_code == 201
        assert response.json()["description"] == "Corrección de precio"

    def test_list_bills_endpoint(self, api_client, session, authorized_bill_data):
        session.routes[("GET", "/bills")] = DummyResponse(200, {
            "success": True, "data": [authorized_bill_data], "pagination": {"page": 1, "total": 1},
        })

        response = api_client.get("/billing/bills", params={"documentNumber": "124"})

        assert response.status_code == 200
        assert response.json()["bills"][0]["statusLabel"] == "AUTORIZADO"
        assert session.calls_to("GET", "/bills")[0]["params"]["documentNumber"] == "124"

    def test_export_endpoint(self, api_client, session, authorized_bill_data):
        session.routes[("GET", "/bills")] = DummyResponse(200, {"success": True, "data": [authorized_bill_data]})

        response = api_client.get("/billing/bills/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "Facturacion_" in response.headers["content-disposition"]
        assert response.headers["cache-control"] == "no-store"

    def test_reset_endpoint_wrong_phrase(self, api_client, session):
        response = api_client.post("/billing/reset", json={"confirmation": "eliminar todo"})

        assert response.status_code == 400
        assert session.calls_to("POST", "/bills/reset") == []
