from pydantic import Field, ConfigDict, field_validator
from decimal import Decimal
from typing import Optional, List, Dict, Any
from enum import Enum

from pos_billing.common.mixins import CamelModel
from pos_billing.modules.orders.schemas import Order
from pos_billing.modules.billing.state import InvoiceProcessState


class PaymentMethod(str, Enum):
    """Formas de pago SRI (tabla 24)"""
    NO_FINANCIAL_SYSTEM = "01"   # Sin utilización del sistema financiero
    DEBT_COMPENSATION = "15"
    DEBIT_CARD = "16"
    ELECTRONIC_MONEY = "17"
    PREPAID_CARD = "18"
    CREDIT_CARD = "19"
    OTHER_FINANCIAL_SYSTEM = "20"
    ENDORSEMENT = "21"


class SRIStatus(str, Enum):
    RECEIVED = "RECIBIDA"
    AUTHORIZED = "AUTORIZADO"
    NOT_AUTHORIZED = "NO AUTORIZADO"
    RETURNED = "DEVUELTA"
    IN_PROCESS = "EN PROCESO"
    CANCELLED = "CANCELLED"


class CreditNoteReason(str, Enum):
    """Motivos de nota de crédito reconocidos por el SRI"""
    RETURN_OF_GOODS = "01"
    DISCOUNT_GRANTED = "02"
    RETURN_VOIDED_DOCUMENT = "03"
    DISCOUNT_VOIDED_DOCUMENT = "04"
    RUC_ERROR = "05"
    DESCRIPTION_ERROR = "06"
    PRICE_CORRECTION = "07"

    @property
    def label(self) -> str:
        return CREDIT_NOTE_REASON_LABELS[self]


CREDIT_NOTE_REASON_LABELS: Dict[CreditNoteReason, str] = {
    CreditNoteReason.RETURN_OF_GOODS: "Devolución de mercancías",
    CreditNoteReason.DISCOUNT_GRANTED: "Descuento concedido",
    CreditNoteReason.RETURN_VOIDED_DOCUMENT: "Devolución por comprobante anulado",
    CreditNoteReason.DISCOUNT_VOIDED_DOCUMENT: "Descuento por comprobante anulado",
    CreditNoteReason.RUC_ERROR: "Error en el RUC",
    CreditNoteReason.DESCRIPTION_ERROR: "Error en descripción",
    CreditNoteReason.PRICE_CORRECTION: "Corrección de precio",
}


# Client Schemas
class ClientData(CamelModel):
    identification: str = Field("", max_length=20, description="RUC, cédula, pasaporte o 9999999999999")
    name: str = Field("", max_length=300)
    email: Optional[str] = Field(None, max_length=300)
    address: Optional[str] = Field(None, max_length=300)
    phone: Optional[str] = Field(None, max_length=50)
    payment_method: PaymentMethod = PaymentMethod.NO_FINANCIAL_SYSTEM

    @field_validator('identification', 'name', mode='before')
    @classmethod
    def strip_text(cls, v):
        if v is None:
            return ""
        return str(v).strip()


# Tax Schemas
class TaxBreakdown(CamelModel):
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal


# Invoice Schemas
class InvoiceValidation(CamelModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    requires_confirmation: bool = False
    identification_type: Optional[str] = None


class InvoiceValidationRequest(CamelModel):
    order: Order
    client: ClientData


class InvoiceRequest(CamelModel):
    order: Order
    client: ClientData
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    logo_url: Optional[str] = None
    confirm_warnings: bool = Field(False, description="El operador aceptó continuar pese a las advertencias")


class InvoiceProcessOut(CamelModel):
    """Estado del proceso de emisión tal como lo muestra el modal"""
    target_id: str
    state: InvoiceProcessState
    message: str = ""
    details: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    access_key: Optional[str] = None
    authorization_date: Optional[str] = None
    is_processing: bool = False
    can_close: bool = True
    warnings: List[str] = Field(default_factory=list)
    breakdown: Optional[TaxBreakdown] = None
    history: List[InvoiceProcessState] = Field(default_factory=list)


class RideRequest(CamelModel):
    """Datos para imprimir el RIDE de una factura emitida"""
    order: Order
    client: ClientData
    invoice_number: Optional[str] = None
    access_key: Optional[str] = None
    authorization_date: Optional[str] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)


class SRIResponse(CamelModel):
    """Respuesta del SRI tal como la reenvía el backend (campos en español)"""
    model_config = ConfigDict(extra="allow")

    estado: Optional[str] = None
    fecha_autorizacion: Optional[str] = None
    numero_autorizacion: Optional[str] = None
    auth_result: Optional[Dict[str, Any]] = None
    mensajes: Any = None


class GenerateInvoiceResponse(CamelModel):
    """Resultado de POST /billing/generate-xml"""
    model_config = ConfigDict(extra="allow")

    success: bool = False
    invoice_id: Optional[str] = None
    access_key: Optional[str] = None
    sri_response: Optional[SRIResponse] = None
    authorization: Optional[SRIResponse] = None

    @field_validator('invoice_id', mode='before')
    @classmethod
    def coerce_invoice_id(cls, v):
        return str(v) if v is not None else v


# Bill Schemas
class BillItem(CamelModel):
    name: str
    quantity: Decimal
    price: Decimal
    total: Decimal


class Bill(CamelModel):
    id: str
    document_number: str = ""
    order_id: Optional[str] = None
    date: Optional[str] = None
    document_type: str = "Factura"
    customer_name: str = ""
    customer_identification: str = ""
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[BillItem] = Field(default_factory=list)
    subtotal: Decimal = Decimal('0')
    tax: Decimal = Decimal('0')
    total: Decimal = Decimal('0')
    regime: Optional[str] = None
    access_key: Optional[str] = None
    sri_status: Optional[str] = None
    environment: Optional[str] = None
    authorization_date: Optional[str] = None
    xml_url: Optional[str] = None
    pdf_url: Optional[str] = None
    has_credit_note: bool = False

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        return str(v)

    @property
    def normalized_status(self) -> str:
        return (self.sri_status or "").strip().upper()

    @property
    def is_cancelled(self) -> bool:
        return self.has_credit_note or self.normalized_status == SRIStatus.CANCELLED.value

    @property
    def display_status(self) -> str:
        if self.is_cancelled:
            return "ANULADO (NC)"
        s = self.normalized_status or "UNKNOWN"
        if s == SRIStatus.AUTHORIZED.value:
            return "AUTORIZADO"
        if s in ("RECIBIDA", "PENDING", "SENT"):
            return "PROCESANDO"
        return s


class BillOut(Bill):
    status_label: str = ""


class BillList(CamelModel):
    bills: List[BillOut]
    total: int
    page: int
    limit: int


class StatusCheckRequest(CamelModel):
    bill: Bill
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    logo_url: Optional[str] = None


# Credit Note Schemas
class CreditNoteCreate(CamelModel):
    bill: Bill
    reason: CreditNoteReason = CreditNoteReason.RETURN_VOIDED_DOCUMENT
    custom_description: Optional[str] = Field(None, max_length=300)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)

    @field_validator('custom_description', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @property
    def full_description(self) -> str:
        if self.custom_description:
            return f"{self.reason.label} - {self.custom_description}"
        return self.reason.label


class CreditNoteEligibility(CamelModel):
    bill_id: str
    eligible: bool
    reason: Optional[str] = None


class CreditNoteResult(CamelModel):
    bill_id: str
    reason: CreditNoteReason
    description: str
    message: str
    response: Optional[Dict[str, Any]] = None


class CreditNote(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    bill_id: Optional[str] = None
    document_number: Optional[str] = None
    reason: Optional[str] = None
    description: Optional[str] = None
    customer_identification: Optional[str] = None
    access_key: Optional[str] = None
    sri_status: Optional[str] = None
    total: Optional[Decimal] = None

    @field_validator('id', 'bill_id', mode='before')
    @classmethod
    def coerce_ids(cls, v):
        return str(v) if v is not None else v


class CreditNoteList(CamelModel):
    credit_notes: List[CreditNote]
    total: int
    page: int
    limit: int


class CreditNoteStatusRequest(CamelModel):
    access_key: str = Field(..., min_length=1)


# Reset Schemas
class ResetBillingRequest(CamelModel):
    confirmation: str


class ResetBillingResult(CamelModel):
    success: bool
    message: str
