"""
Máquina de estados del proceso de facturación

    IDLE -> VALIDATING -> GENERATING -> SIGNING -> SENDING
         -> WAITING_AUTHORIZATION -> AUTHORIZED | PENDING | ERROR

- Cualquier estado de procesamiento puede pasar a ERROR.
- PENDING puede volver a WAITING_AUTHORIZATION con "verificar estado".
- AUTHORIZED y ERROR son terminales: un nuevo intento es un proceso nuevo.
- No hay transiciones por tiempo; solo avanza con respuestas externas.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

logger = logging.getLogger(__name__)


class InvoiceProcessState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    GENERATING = "generating"
    SIGNING = "signing"
    SENDING = "sending"
    WAITING_AUTHORIZATION = "waiting_authorization"
    AUTHORIZED = "authorized"
    PENDING = "pending"
    ERROR = "error"


PROCESSING_STATES: FrozenSet[InvoiceProcessState] = frozenset({
    InvoiceProcessState.VALIDATING,
    InvoiceProcessState.GENERATING,
    InvoiceProcessState.SIGNING,
    InvoiceProcessState.SENDING,
    InvoiceProcessState.WAITING_AUTHORIZATION,
})

TERMINAL_STATES: FrozenSet[InvoiceProcessState] = frozenset({
    InvoiceProcessState.AUTHORIZED,
    InvoiceProcessState.ERROR,
})

_ERROR = InvoiceProcessState.ERROR

TRANSITIONS: Dict[InvoiceProcessState, FrozenSet[InvoiceProcessState]] = {
    InvoiceProcessState.IDLE: frozenset({InvoiceProcessState.VALIDATING}),
    InvoiceProcessState.VALIDATING: frozenset({InvoiceProcessState.GENERATING, _ERROR}),
    InvoiceProcessState.GENERATING: frozenset({InvoiceProcessState.SIGNING, _ERROR}),
    InvoiceProcessState.SIGNING: frozenset({InvoiceProcessState.SENDING, _ERROR}),
    InvoiceProcessState.SENDING: frozenset({InvoiceProcessState.WAITING_AUTHORIZATION, _ERROR}),
    InvoiceProcessState.WAITING_AUTHORIZATION: frozenset({
        InvoiceProcessState.AUTHORIZED,
        InvoiceProcessState.PENDING,
        _ERROR,
    }),
    InvoiceProcessState.PENDING: frozenset({InvoiceProcessState.WAITING_AUTHORIZATION}),
    InvoiceProcessState.AUTHORIZED: frozenset(),
    InvoiceProcessState.ERROR: frozenset(),
}

# Mensajes que ve el operador en el modal de progreso
STATE_MESSAGES: Dict[InvoiceProcessState, str] = {
    InvoiceProcessState.IDLE: "",
    InvoiceProcessState.VALIDATING: "Validando datos del cliente...",
    InvoiceProcessState.GENERATING: "Generando comprobante electrónico...",
    InvoiceProcessState.SIGNING: "Firmando documento...",
    InvoiceProcessState.SENDING: "Enviando al SRI...",
    InvoiceProcessState.WAITING_AUTHORIZATION: "Esperando autorización del SRI...",
    InvoiceProcessState.AUTHORIZED: "Factura autorizada",
    InvoiceProcessState.PENDING: "Factura recibida, pendiente de autorización",
    InvoiceProcessState.ERROR: "Error en la facturación",
}


class InvalidTransition(ValueError):
    def __init__(self, current: InvoiceProcessState, target: InvoiceProcessState):
        super().__init__(f"Transición inválida: {current.value} -> {target.value}")
        self.current = current
        self.target = target


def can_transition(current: InvoiceProcessState, target: InvoiceProcessState) -> bool:
    return target in TRANSITIONS[current]


@dataclass
class StateChange:
    state: InvoiceProcessState
    at: datetime


@dataclass
class BillingProcess:
    """Estado observable de una emisión (lo que el modal muestra)"""

    state: InvoiceProcessState = InvoiceProcessState.IDLE
    message: str = ""
    details: Optional[str] = None
    invoice_number: Optional[str] = None
    access_key: Optional[str] = None
    authorization_date: Optional[str] = None
    history: List[StateChange] = field(default_factory=list)
    on_transition: Optional[Callable[["BillingProcess"], None]] = field(default=None, repr=False)

    @classmethod
    def from_pending_bill(cls, access_key: Optional[str], invoice_number: Optional[str] = None) -> "BillingProcess":
        """Proceso ya en PENDING, usado al verificar un comprobante del historial"""
        process = cls(
            state=InvoiceProcessState.PENDING,
            message=STATE_MESSAGES[InvoiceProcessState.PENDING],
            access_key=access_key,
            invoice_number=invoice_number,
        )
        process.history.append(StateChange(InvoiceProcessState.PENDING, datetime.now()))
        return process

    @property
    def is_processing(self) -> bool:
        return self.state in PROCESSING_STATES

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_close(self) -> bool:
        """El modal no se puede cerrar mientras el proceso está en curso"""
        return not self.is_processing

    def transition(
        self,
        target: InvoiceProcessState,
        message: Optional[str] = None,
        details: Optional[str] = None
    ) -> "BillingProcess":
        if not can_transition(self.state, target):
            raise InvalidTransition(self.state, target)

        logger.info(f"Billing process {self.state.value} -> {target.value}")
        self.state = target
        self.message = message if message is not None else STATE_MESSAGES[target]
        self.details = details
        self.history.append(StateChange(target, datetime.now()))
        if self.on_transition:
            self.on_transition(self)
        return self

    def fail(self, message: str, details: Optional[str] = None) -> "BillingProcess":
        return self.transition(InvoiceProcessState.ERROR, message, details)

    @property
    def visited(self) -> List[InvoiceProcessState]:
        return [change.state for change in self.history]
