"""
Servicios del módulo de Facturación Electrónica (SRI Ecuador)

- validate_client: validaciones previas a cualquier llamada de red
- classify_response: traduce la respuesta del backend/SRI a un estado
- InvoiceIssuer: orquesta la emisión de facturas sobre la máquina de estados
- CreditNoteIssuer: anulación de facturas autorizadas con nota de crédito
- BillingHistoryService: historial paginado, exportación CSV y reseteo
"""
import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, NamedTuple, Optional, Set

from fastapi import HTTPException, status
from pydantic import ValidationError

from pos_billing.common.backend_client import BillingAPIError
from pos_billing.common.csv_export import build_csv
from pos_billing.common.validators import (
    is_deliverable_email, is_final_consumer, validate_ecuador_identification
)
from pos_billing.core.config import settings
from pos_billing.modules.billing.calculator import calculate_tax_breakdown
from pos_billing.modules.billing.client import BillingClient, split_page
from pos_billing.modules.billing.schemas import (
    Bill, BillList, BillOut, ClientData, CreditNote, CreditNoteCreate, CreditNoteEligibility,
    CreditNoteList, CreditNoteResult, GenerateInvoiceResponse, InvoiceProcessOut, InvoiceRequest,
    InvoiceValidation, ResetBillingResult, SRIResponse, SRIStatus, StatusCheckRequest, TaxBreakdown
)
from pos_billing.modules.billing.state import BillingProcess, InvoiceProcessState
from pos_billing.modules.orders.schemas import Order, OrderItem, OrderStatus
from pos_billing.modules.settings.service import ConfigSynchronizer, normalize_document_number, require_confirmation

logger = logging.getLogger(__name__)

Runner = Callable[[Callable[[], object]], None]

AUTHORIZED_STATUSES = {"AUTORIZADO"}
PENDING_STATUSES = {"RECIBIDA", "EN PROCESO", "PENDING", "SENT", "UNKNOWN", "TIMEOUT_POLLING"}
ERROR_STATUSES = {"DEVUELTA", "NO AUTORIZADO", "RECHAZADA"}

NO_EMAIL_WARNING = (
    "No se ha ingresado un email válido. La factura se generará correctamente "
    "pero NO se enviará por correo electrónico."
)


# ===== VALIDACIÓN =====

def validate_client(client: ClientData, total: Decimal) -> InvoiceValidation:
    """
    Validar los datos del cliente antes de emitir

    Los errores bloquean la emisión; las advertencias marcadas con
    requires_confirmation exigen que el operador confirme para continuar.
    """
    errors: List[str] = []
    warnings: List[str] = []
    requires_confirmation = False

    if not client.identification:
        errors.append("La identificación (RUC/Cédula) del cliente es obligatoria")
    if not client.name:
        errors.append("El nombre del cliente es obligatorio")
    if errors:
        return InvoiceValidation(is_valid=False, errors=errors)

    result = validate_ecuador_identification(client.identification)
    final_consumer = is_final_consumer(client.identification)

    if final_consumer and Decimal(str(total)) > Decimal(str(settings.FINAL_CONSUMER_LIMIT)):
        warnings.append(
            f"El monto supera ${settings.FINAL_CONSUMER_LIMIT:.2f}. "
            "El SRI exige identificar al cliente para ventas a Consumidor Final sobre este valor."
        )
        requires_confirmation = True

    if not final_consumer and not is_deliverable_email(client.email or ""):
        warnings.append(NO_EMAIL_WARNING)
        requires_confirmation = True

    if not result.is_valid:
        warnings.append(f"La identificación {client.identification} no supera la validación del dígito verificador")

    return InvoiceValidation(
        is_valid=True,
        warnings=warnings,
        requires_confirmation=requires_confirmation,
        identification_type=result.type
    )


# ===== CLASIFICACIÓN DE RESPUESTAS =====

class SRIVerdict(NamedTuple):
    state: InvoiceProcessState
    message: str
    sri_status: Optional[str] = None
    access_key: Optional[str] = None
    authorization_date: Optional[str] = None
    invoice_id: Optional[str] = None


def _format_messages(raw: Any) -> List[str]:
    """Mensajes del SRI: lista de textos o de {identificador, mensaje, informacionAdicional}"""
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get("mensaje", [raw])
    if not isinstance(raw, list):
        raw = [raw]

    messages = []
    for item in raw:
        if isinstance(item, dict):
            text = item.get("mensaje") or item.get("message") or ""
            extra = item.get("informacionAdicional")
            if extra:
                text = f"{text}: {extra}" if text else str(extra)
            if item.get("identificador"):
                text = f"[{item['identificador']}] {text}"
            if text:
                messages.append(str(text))
        elif item:
            messages.append(str(item))
    return messages


def _auth_result(sri: Optional[SRIResponse]) -> Optional[SRIResponse]:
    if sri is None or not sri.auth_result:
        return None
    return SRIResponse.model_validate(sri.auth_result)


def classify_response(payload: Any) -> SRIVerdict:
    """
    Clasificar la respuesta de generate-xml o check-status

    Prioridad del estado: authorization > sriResponse.authResult > sriResponse.
    Los mensajes del SRI se conservan literalmente.
    """
    if not isinstance(payload, dict):
        return SRIVerdict(InvoiceProcessState.ERROR, "Respuesta inesperada del servidor de facturación")

    try:
        response = GenerateInvoiceResponse.model_validate(payload)
    except ValidationError as e:
        logger.error(f"Unexpected billing response shape: {e}")
        return SRIVerdict(InvoiceProcessState.ERROR, "Respuesta inesperada del servidor de facturación")

    sources = [s for s in (response.authorization, _auth_result(response.sri_response), response.sri_response) if s]
    sri = next((s for s in sources if s.estado), None)
    estado = sri.estado.strip().upper() if sri else None

    messages: List[str] = []
    for source in sources:
        messages.extend(m for m in _format_messages(source.mensajes) if m not in messages)

    authorization_date = next((s.fecha_autorizacion for s in sources if s.fecha_autorizacion), None)
    access_key = response.access_key or next((s.numero_autorizacion for s in sources if s.numero_autorizacion), None)
    common = dict(sri_status=estado, access_key=access_key, invoice_id=response.invoice_id)

    if not response.success:
        error = payload.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        message = "; ".join(messages) or error or payload.get("message") or "Hubo un problema al generar la factura."
        return SRIVerdict(InvoiceProcessState.ERROR, str(message), **common)

    if estado in AUTHORIZED_STATUSES:
        return SRIVerdict(
            InvoiceProcessState.AUTHORIZED, "Factura autorizada por el SRI",
            authorization_date=authorization_date, **common
        )
    if estado in ERROR_STATUSES:
        message = "; ".join(messages) or f"El SRI respondió {estado}"
        return SRIVerdict(InvoiceProcessState.ERROR, message, **common)

    # RECIBIDA, EN PROCESO, etc. o sin veredicto: recuperable con "verificar estado"
    if estado and estado not in PENDING_STATUSES:
        logger.warning(f"Unrecognized SRI status '{estado}', treating as pending")
    message = "; ".join(messages) or "Comprobante recibido, pendiente de autorización del SRI"
    return SRIVerdict(InvoiceProcessState.PENDING, message, **common)


# ===== CONTROL DE OPERACIONES EN CURSO =====

class InFlightGuard:
    """Una sola emisión o nota de crédito por pedido/factura a la vez"""

    def __init__(self):
        self._lock = Lock()
        self._keys: Set[str] = set()

    def is_busy(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._lock:
            if key in self._keys:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Ya hay una operación de facturación en curso para este documento"
                )
            self._keys.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._keys.discard(key)


class ProcessRegistry:
    """Último proceso conocido por pedido/factura, para consultar su progreso"""

    def __init__(self):
        self._lock = Lock()
        self._processes: Dict[str, BillingProcess] = {}

    def track(self, key: str, process: BillingProcess) -> BillingProcess:
        with self._lock:
            self._processes[key] = process
        return process

    def get(self, key: str) -> Optional[BillingProcess]:
        with self._lock:
            return self._processes.get(key)


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def bill_key(bill_id: str) -> str:
    return f"bill:{bill_id}"


def process_out(
    target_id: str,
    process: BillingProcess,
    warnings: Optional[List[str]] = None,
    breakdown: Optional[TaxBreakdown] = None,
    invoice_id: Optional[str] = None
) -> InvoiceProcessOut:
    return InvoiceProcessOut(
        target_id=target_id,
        state=process.state,
        message=process.message,
        details=process.details,
        invoice_id=invoice_id,
        invoice_number=process.invoice_number,
        access_key=process.access_key,
        authorization_date=process.authorization_date,
        is_processing=process.is_processing,
        can_close=process.can_close,
        warnings=warnings or [],
        breakdown=breakdown,
        history=process.visited
    )


def resolve_process(process: BillingProcess, verdict: SRIVerdict) -> BillingProcess:
    """Aplicar el veredicto desde WAITING_AUTHORIZATION"""
    if verdict.access_key:
        process.access_key = verdict.access_key
    if verdict.state == InvoiceProcessState.AUTHORIZED:
        process.authorization_date = verdict.authorization_date
        return process.transition(InvoiceProcessState.AUTHORIZED, verdict.message)
    if verdict.state == InvoiceProcessState.PENDING:
        return process.transition(InvoiceProcessState.PENDING, details=verdict.message)
    return process.fail(verdict.message, details=verdict.sri_status)


# ===== EMISIÓN DE FACTURAS =====

class InvoiceIssuer:
    """
    Orquestador de emisión de facturas

    La generación, firma y envío al SRI los realiza el backend en una sola
    llamada; aquí se recorre la máquina de estados, se clasifica el resultado
    y, si el backend asignó un secuencial, se refresca la configuración.
    """

    def __init__(
        self,
        client: BillingClient,
        synchronizer: ConfigSynchronizer,
        guard: Optional[InFlightGuard] = None,
        registry: Optional[ProcessRegistry] = None
    ):
        self.client = client
        self.synchronizer = synchronizer
        self.guard = guard or InFlightGuard()
        self.registry = registry or ProcessRegistry()

    def validate(self, order: Order, client: ClientData) -> InvoiceValidation:
        return validate_client(client, order.total)

    def issue(self, request: InvoiceRequest, runner: Optional[Runner] = None) -> InvoiceProcessOut:
        order = request.order
        if not order.items:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="El pedido no tiene ítems para facturar")
        if order.billed:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="El pedido ya fue facturado")
        if order.status != OrderStatus.COMPLETED:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Solo se pueden facturar pedidos completados")

        validation = self.validate(order, request.client)
        if not validation.is_valid:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="; ".join(validation.errors))

        if validation.requires_confirmation and not request.confirm_warnings:
            logger.info(f"Invoice for order {order.id} needs operator confirmation")
            return InvoiceProcessOut(
                target_id=order.id,
                state=InvoiceProcessState.IDLE,
                message="Se requiere confirmación del operador para continuar",
                warnings=validation.warnings
            )

        with self.guard.hold(order_key(order.id)):
            return self._run(
                key=order_key(order.id),
                target_id=order.id,
                order=order,
                client=request.client,
                tax_rate=request.tax_rate,
                logo_url=request.logo_url,
                runner=runner,
                warnings=validation.warnings
            )

    def _run(
        self,
        key: str,
        target_id: str,
        order: Order,
        client: ClientData,
        tax_rate: Optional[Decimal],
        logo_url: Optional[str],
        runner: Optional[Runner],
        warnings: Optional[List[str]] = None
    ) -> InvoiceProcessOut:
        # La emisión anterior debe haber refrescado los secuenciales
        if not self.synchronizer.wait_until_fresh():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="La configuración de facturación se está actualizando. Intente nuevamente."
            )

        config = self.synchronizer.current()
        if tax_rate is None:
            tax_rate = config.billing.tax_rate
        breakdown = calculate_tax_breakdown(order.total, tax_rate)

        process = self.registry.track(key, BillingProcess())
        process.transition(InvoiceProcessState.VALIDATING)
        process.transition(InvoiceProcessState.GENERATING)
        order_payload = order.to_wire()
        client_payload = client.to_wire()
        process.transition(InvoiceProcessState.SIGNING)
        process.transition(InvoiceProcessState.SENDING)

        logger.info(f"Sending invoice for order {order.id} (total {breakdown.total}, IVA {breakdown.tax_rate}%)")
        try:
            response = self.client.generate_xml(
                order_payload, client_payload, breakdown.tax_rate, logo_url or config.invoice_logo
            )
        except BillingAPIError as e:
            logger.error(f"Invoice for order {order.id} failed: {e.message}")
            process.fail(e.message)
            return process_out(target_id, process, warnings, breakdown)

        process.transition(InvoiceProcessState.WAITING_AUTHORIZATION)
        verdict = classify_response(response)
        process.invoice_number = normalize_document_number(config, verdict.invoice_id) or None
        resolve_process(process, verdict)
        logger.info(f"Invoice for order {order.id} finished as {process.state.value}")

        # AUTORIZADO o RECIBIDA: el backend ya consumió un secuencial
        if process.state in (InvoiceProcessState.AUTHORIZED, InvoiceProcessState.PENDING):
            self.synchronizer.schedule_refresh(runner)

        return process_out(target_id, process, warnings, breakdown, verdict.invoice_id)

    def check_status(self, request: StatusCheckRequest, runner: Optional[Runner] = None) -> InvoiceProcessOut:
        """
        Verificar el estado de una factura del historial

        Sin clave de acceso la factura nunca llegó al SRI y se reenvía como
        una emisión NUEVA (el backend asigna otro secuencial).
        """
        bill = request.bill
        if bill.is_cancelled:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="La factura está anulada con nota de crédito")
        if bill.normalized_status == SRIStatus.AUTHORIZED.value:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="La factura ya está autorizada")

        key = bill_key(bill.id)
        with self.guard.hold(key):
            if not bill.access_key:
                logger.info(f"Bill {bill.id} has no access key, re-submitting as a new invoice")
                order, client = self._rebuild_from_bill(bill)
                return self._run(key, bill.id, order, client, request.tax_rate, request.logo_url, runner)

            process = self.registry.track(key, BillingProcess.from_pending_bill(bill.access_key, bill.document_number))
            process.transition(InvoiceProcessState.WAITING_AUTHORIZATION)
            try:
                response = self.client.check_status(bill.access_key)
            except BillingAPIError as e:
                logger.error(f"Status check for bill {bill.id} failed: {e.message}")
                process.fail(e.message)
                return process_out(bill.id, process)

            resolve_process(process, classify_response(response))
            logger.info(f"Status check for bill {bill.id}: {process.state.value}")
            return process_out(bill.id, process)

    def _rebuild_from_bill(self, bill: Bill):
        items = [
            OrderItem(
                name=item.name,
                quantity=int(item.quantity),
                price=(item.total / item.quantity)
            )
            for item in bill.items if item.quantity > 0
        ]
        if not items:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="La factura no tiene ítems para reenviar")

        config = self.synchronizer.current()
        # Sin orderNumber: el backend genera un secuencial nuevo
        order = Order(
            id=bill.order_id or bill.id,
            customer_name=bill.customer_name,
            items=items,
            status=OrderStatus.COMPLETED
        )
        client = ClientData(
            identification=bill.customer_identification,
            name=bill.customer_name,
            address=bill.customer_address,
            email=bill.customer_email or config.fiscal_email
        )
        if not client.identification or not client.name:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="La factura no tiene datos del cliente")
        return order, client

    def get_process(self, order_id: str) -> InvoiceProcessOut:
        for key in (order_key(order_id), bill_key(order_id)):
            process = self.registry.get(key)
            if process:
                return process_out(order_id, process)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No hay un proceso de facturación para este documento")


# ===== NOTAS DE CRÉDITO =====

def credit_note_refusal(bill: Bill) -> Optional[str]:
    """Motivo por el cual una factura no admite nota de crédito (None si es elegible)"""
    if bill.normalized_status != SRIStatus.AUTHORIZED.value:
        return "Solo se pueden anular facturas AUTORIZADAS por el SRI"
    if bill.has_credit_note:
        return "La factura ya tiene una nota de crédito"
    if is_final_consumer(bill.customer_identification):
        return "No se puede emitir nota de crédito a Consumidor Final"
    return None


class CreditNoteIssuer:
    """Sin reintentos locales: cualquier fallo se informa tal cual al operador"""

    def __init__(self, client: BillingClient, synchronizer: ConfigSynchronizer, guard: Optional[InFlightGuard] = None):
        self.client = client
        self.synchronizer = synchronizer
        self.guard = guard or InFlightGuard()

    def eligibility(self, bill: Bill) -> CreditNoteEligibility:
        refusal = credit_note_refusal(bill)
        return CreditNoteEligibility(bill_id=bill.id, eligible=refusal is None, reason=refusal)

    def issue(self, request: CreditNoteCreate, runner: Optional[Runner] = None) -> CreditNoteResult:
        bill = request.bill
        refusal = credit_note_refusal(bill)
        if refusal:
            logger.info(f"Credit note refused for bill {bill.id}: {refusal}")
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=refusal)

        # El secuencial de la nota anterior debe estar confirmado
        if not self.synchronizer.wait_until_fresh():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="La configuración de facturación se está actualizando. Intente nuevamente."
            )

        description = request.full_description
        tax_rate = request.tax_rate
        if tax_rate is None:
            tax_rate = self.synchronizer.current().billing.tax_rate
        if tax_rate is None:
            tax_rate = Decimal(str(settings.DEFAULT_TAX_RATE))

        with self.guard.hold(bill_key(bill.id)):
            logger.info(f"Issuing credit note for bill {bill.id} (reason {request.reason.value})")
            try:
                response = self.client.generate_credit_note(
                    bill.id,
                    request.reason.value,
                    description if request.custom_description else None,
                    tax_rate
                )
            except BillingAPIError as e:
                logger.error(f"Credit note for bill {bill.id} failed: {e.message}")
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

        # El backend avanzó el secuencial de notas de crédito
        self.synchronizer.schedule_refresh(runner)
        logger.info(f"Credit note for bill {bill.id} generated")

        return CreditNoteResult(
            bill_id=bill.id,
            reason=request.reason,
            description=description,
            message="Nota de crédito generada y enviada al SRI exitosamente",
            response=response if isinstance(response, dict) else None
        )

    def list_credit_notes(
        self,
        page: int = 1,
        limit: int = 20,
        bill_id: Optional[str] = None,
        reason: Optional[str] = None,
        customer_identification: Optional[str] = None
    ) -> CreditNoteList:
        try:
            result = self.client.get_credit_notes(page, limit, bill_id, reason, customer_identification)
        except BillingAPIError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

        items, total, current_page = split_page(result)
        return CreditNoteList(
            credit_notes=[CreditNote.model_validate(item) for item in items],
            total=total,
            page=current_page or page,
            limit=limit
        )

    def check_status(self, access_key: str) -> Dict[str, Any]:
        try:
            result = self.client.check_credit_note_status(access_key)
        except BillingAPIError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
        return result if isinstance(result, dict) else {"result": result}


# ===== HISTORIAL =====

BILLS_CSV_HEADERS = {
    "date": "Fecha",
    "document_number": "Numero",
    "customer_name": "Cliente",
    "customer_identification": "RUC/CI",
    "subtotal": "Subtotal",
    "tax": "IVA",
    "total": "Total",
    "sri_status": "SRI Status",
    "access_key": "Clave Acceso",
}


class BillingHistoryService:
    def __init__(self, client: BillingClient, synchronizer: ConfigSynchronizer):
        self.client = client
        self.synchronizer = synchronizer

    def list_bills(
        self,
        page: int = 1,
        limit: int = 50,
        document_number: Optional[str] = None,
        customer_identification: Optional[str] = None,
        document_type: Optional[str] = None
    ) -> BillList:
        try:
            result = self.client.get_all(page, limit, document_number, customer_identification, document_type)
        except BillingAPIError as e:
            logger.error(f"Error fetching bills: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

        items, total, current_page = split_page(result)
        bills = []
        for item in items:
            bill = BillOut.model_validate(item)
            bill.status_label = bill.display_status
            bills.append(bill)
        return BillList(bills=bills, total=total, page=current_page or page, limit=limit)

    def export_csv(self, bills: List[Bill]) -> str:
        rows = []
        for bill in bills:
            rows.append({
                "date": bill.date,
                "document_number": bill.document_number,
                "customer_name": bill.customer_name,
                "customer_identification": bill.customer_identification,
                "subtotal": bill.subtotal,
                "tax": bill.tax,
                "total": bill.total,
                "sri_status": bill.sri_status or "PENDIENTE",
                # Comilla inicial para que Excel no use notación científica
                "access_key": f"'{bill.access_key or ''}",
            })
        return build_csv(rows, BILLS_CSV_HEADERS)

    @staticmethod
    def export_filename() -> str:
        return f"Facturacion_{date.today().isoformat()}.csv"

    def reset_billing(self, confirmation: str) -> ResetBillingResult:
        """
        Borrar todas las facturas y notas de crédito, reiniciar secuenciales
        y desmarcar las órdenes facturadas. Irreversible.
        """
        require_confirmation(confirmation, settings.RESET_BILLING_PHRASE)
        logger.warning("Resetting billing system")
        try:
            self.client.reset_system()
        except BillingAPIError as e:
            logger.error(f"Billing reset failed: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

        self.synchronizer.schedule_refresh()
        return ResetBillingResult(success=True, message="Sistema de facturación reiniciado")
