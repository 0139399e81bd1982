from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse, Response

from pos_billing.core.config import settings
from pos_billing.dependencies.backendDependencies import (
    credit_note_issuer_dependency, get_config_synchronizer, get_ride_renderer,
    history_service_dependency, invoice_issuer_dependency
)
from pos_billing.modules.billing.ride import RideRenderer
from pos_billing.modules.billing.schemas import (
    Bill, BillList, CreditNoteCreate, CreditNoteEligibility, CreditNoteList, CreditNoteReason,
    CreditNoteResult, CreditNoteStatusRequest, InvoiceProcessOut, InvoiceRequest, InvoiceValidation,
    InvoiceValidationRequest, ResetBillingRequest, ResetBillingResult, RideRequest, StatusCheckRequest
)
from pos_billing.modules.settings.service import ConfigSynchronizer

# Router de facturación electrónica SRI
router = APIRouter(prefix="/billing", tags=["Billing"])


# ===== FACTURAS =====

@router.post("/validate", response_model=InvoiceValidation)
def validate_invoice(request: InvoiceValidationRequest, issuer: invoice_issuer_dependency):
    """
    Validar datos del cliente sin llamar al backend

    Devuelve errores (bloquean la emisión) y advertencias que requieren
    confirmación del operador (Consumidor Final sobre el tope, sin email).
    """
    return issuer.validate(request.order, request.client)


@router.post("/invoices", response_model=InvoiceProcessOut)
def issue_invoice(request: InvoiceRequest, background_tasks: BackgroundTasks, issuer: invoice_issuer_dependency):
    """
    Emitir factura electrónica para un pedido

    - Si hay advertencias sin confirmar, responde en estado `idle` con las advertencias
    - El resultado es `authorized`, `pending` (verificable luego) o `error`
      con el mensaje del SRI/backend sin modificar
    - Tras un secuencial consumido se refresca la configuración en segundo plano
    """
    return issuer.issue(request, runner=background_tasks.add_task)


@router.get("/invoices/{order_id}/process", response_model=InvoiceProcessOut)
def get_invoice_process(order_id: str, issuer: invoice_issuer_dependency):
    """Estado actual del proceso de emisión (para el modal de progreso)"""
    return issuer.get_process(order_id)


@router.post("/invoices/{order_id}/ride", response_class=HTMLResponse)
def render_ride(
    order_id: str,
    request: RideRequest,
    renderer: RideRenderer = Depends(get_ride_renderer),
    synchronizer: ConfigSynchronizer = Depends(get_config_synchronizer)
):
    """Generar el RIDE (HTML imprimible) de una factura emitida"""
    if request.order.id != order_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="El pedido no coincide con la ruta")
    return HTMLResponse(content=renderer.render(request, synchronizer.current()))


@router.post("/check-status", response_model=InvoiceProcessOut)
def check_invoice_status(request: StatusCheckRequest, background_tasks: BackgroundTasks, issuer: invoice_issuer_dependency):
    """
    Verificar el estado SRI de una factura del historial

    Si la factura no tiene clave de acceso se reenvía como una factura nueva.
    """
    return issuer.check_status(request, runner=background_tasks.add_task)


# ===== HISTORIAL =====

@router.get("/bills", response_model=BillList)
def list_bills(
    service: history_service_dependency,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=settings.MAX_PAGE_SIZE),
    document_number: Optional[str] = Query(None, alias="documentNumber"),
    customer_identification: Optional[str] = Query(None, alias="customerIdentification"),
    document_type: Optional[str] = Query(None, alias="documentType")
):
    """Historial de facturas paginado y filtrable"""
    return service.list_bills(page, limit, document_number, customer_identification, document_type)


@router.get("/bills/export")
def export_bills(
    service: history_service_dependency,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.MAX_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    document_number: Optional[str] = Query(None, alias="documentNumber"),
    customer_identification: Optional[str] = Query(None, alias="customerIdentification"),
    document_type: Optional[str] = Query(None, alias="documentType")
):
    """Exportar a CSV la página de historial solicitada"""
    bills = service.list_bills(page, limit, document_number, customer_identification, document_type).bills
    return Response(
        content=service.export_csv(bills),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={service.export_filename()}"}
    )


@router.post("/bills/credit-note-eligibility", response_model=CreditNoteEligibility)
def credit_note_eligibility(bill: Bill, issuer: credit_note_issuer_dependency):
    """Indica si la factura admite nota de crédito y, si no, por qué"""
    return issuer.eligibility(bill)


@router.post("/reset", response_model=ResetBillingResult)
def reset_billing(request: ResetBillingRequest, service: history_service_dependency):
    """
    Reiniciar el sistema de facturación

    Borra facturas y notas de crédito, reinicia secuenciales y desmarca
    pedidos facturados. Requiere escribir literalmente ELIMINAR TODO.
    """
    return service.reset_billing(request.confirmation)


# ===== NOTAS DE CRÉDITO =====

@router.post("/credit-notes", response_model=CreditNoteResult, status_code=status.HTTP_201_CREATED)
def create_credit_note(request: CreditNoteCreate, background_tasks: BackgroundTasks, issuer: credit_note_issuer_dependency):
    """
    Emitir nota de crédito para anular una factura

    Solo facturas AUTORIZADAS, sin nota de crédito previa y que no sean
    de Consumidor Final. No se reintenta automáticamente.
    """
    return issuer.issue(request, runner=background_tasks.add_task)


@router.get("/credit-notes", response_model=CreditNoteList)
def list_credit_notes(
    issuer: credit_note_issuer_dependency,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    bill_id: Optional[str] = Query(None, alias="billId"),
    reason: Optional[CreditNoteReason] = Query(None),
    customer_identification: Optional[str] = Query(None, alias="customerIdentification")
):
    """Historial de notas de crédito"""
    return issuer.list_credit_notes(
        page, limit, bill_id, reason.value if reason else None, customer_identification
    )


@router.post("/credit-notes/check-status")
def check_credit_note_status(request: CreditNoteStatusRequest, issuer: credit_note_issuer_dependency):
    """Verificar el estado SRI de una nota de crédito"""
    return issuer.check_status(request.access_key)
