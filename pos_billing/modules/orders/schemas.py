from pydantic import Field, field_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from enum import Enum

from pos_billing.common.mixins import CamelModel, WireDecimal, money


class OrderStatus(str, Enum):
    NEW = "Nuevo"
    READY = "Listo"
    COMPLETED = "Completado"


class OrderType(str, Enum):
    DINE_IN = "En Local"
    DELIVERY = "Delivery"
    TAKEOUT = "Para Llevar"


# Ciclo operado manualmente: Nuevo -> Listo -> Completado -> Nuevo
_STATUS_CYCLE = {
    OrderStatus.NEW: OrderStatus.READY,
    OrderStatus.READY: OrderStatus.COMPLETED,
    OrderStatus.COMPLETED: OrderStatus.NEW,
}


def next_status(current: OrderStatus) -> OrderStatus:
    return _STATUS_CYCLE[OrderStatus(current)]


class OrderItem(CamelModel):
    name: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0, description="Cantidad debe ser mayor a 0")
    price: Optional[WireDecimal] = Field(None, ge=0, description="Precio unitario con IVA al momento del pedido")
    prepared: bool = False

    @property
    def line_total(self) -> Decimal:
        return (self.price or Decimal('0')) * self.quantity


class Order(CamelModel):
    id: str
    customer_name: str = ""
    items: List[OrderItem] = Field(default_factory=list)
    type: OrderType = OrderType.DINE_IN
    status: OrderStatus = OrderStatus.NEW
    created_at: Optional[datetime] = None
    billed: bool = False
    order_number: Optional[str] = None

    @field_validator('items')
    @classmethod
    def validate_items(cls, v):
        if v is None:
            return []
        return v

    @property
    def total(self) -> Decimal:
        """Total = suma(precio x cantidad), redondeado a 2 decimales"""
        return money(sum((item.line_total for item in self.items), Decimal('0')))

    def advance_status(self) -> "Order":
        """Devuelve una copia con el siguiente estado; no toca `billed`"""
        return self.model_copy(update={"status": next_status(self.status)})


class OrderTotal(CamelModel):
    order_id: str
    total: Decimal
    item_count: int


class OrderStatusChange(CamelModel):
    order_id: str
    previous_status: OrderStatus
    status: OrderStatus
