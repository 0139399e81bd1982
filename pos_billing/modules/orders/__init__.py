"""
Módulo de Pedidos

Modelo de pedido del restaurante tal como lo entrega el backend:
ítems con precio y cantidad, tipo (en local, delivery, para llevar) y
estado cíclico operado por el personal (Nuevo -> Listo -> Completado -> Nuevo).
"""

from .schemas import Order, OrderItem, OrderStatus, OrderType, next_status
from .router import router

__all__ = ["Order", "OrderItem", "OrderStatus", "OrderType", "next_status", "router"]
