from fastapi import APIRouter, status

from pos_billing.modules.orders.schemas import Order, OrderTotal, OrderStatusChange

# Router del módulo de pedidos (solo cálculos; la persistencia vive en el backend)
router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/total", response_model=OrderTotal)
def order_total(order: Order):
    """
    Calcular el total de un pedido

    total = suma(precio x cantidad) de sus ítems, redondeado a 2 decimales.
    """
    return OrderTotal(order_id=order.id, total=order.total, item_count=len(order.items))


@router.post("/advance-status", response_model=OrderStatusChange, status_code=status.HTTP_200_OK)
def advance_order_status(order: Order):
    """
    Avanzar el estado del pedido: Nuevo -> Listo -> Completado -> Nuevo
    """
    updated = order.advance_status()
    return OrderStatusChange(order_id=order.id, previous_status=order.status, status=updated.status)
