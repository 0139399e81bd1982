"""
Módulo de Facturación Electrónica (SRI Ecuador)

Pasarela entre el punto de venta y el backend que firma y envía los
comprobantes al SRI:
- Validación previa de datos del cliente (sin llamadas de red)
- Máquina de estados del proceso de emisión
- Emisión de facturas y verificación de estado
- Notas de crédito para anular facturas autorizadas
- Historial, exportación CSV, RIDE y reseteo del sistema

Los secuenciales y la autorización pertenecen al backend; aquí nunca se
asume un número antes de que el backend lo confirme.
"""

from .state import BillingProcess, InvoiceProcessState, InvalidTransition
from .calculator import calculate_tax_breakdown
from .schemas import Bill, ClientData, CreditNoteReason, InvoiceRequest
from .service import (
    validate_client, classify_response, InvoiceIssuer, CreditNoteIssuer, BillingHistoryService
)

__all__ = [
    "BillingProcess", "InvoiceProcessState", "InvalidTransition",
    "calculate_tax_breakdown",
    "Bill", "ClientData", "CreditNoteReason", "InvoiceRequest",
    "validate_client", "classify_response", "InvoiceIssuer", "CreditNoteIssuer", "BillingHistoryService",
]
