"""
Tests para el módulo de Pedidos

- Total del pedido = suma(precio x cantidad)
- Ciclo de estados Nuevo -> Listo -> Completado -> Nuevo
- Endpoints de cálculo
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from pos_billing.main import app
from pos_billing.modules.orders.schemas import Order, OrderItem, OrderStatus, OrderType, next_status


client = TestClient(app)


# ===== FIXTURES =====

@pytest.fixture
def sample_order_data():
    """Pedido de ejemplo en formato JSON del backend"""
    return {
        "id": "ord-001",
        "customerName": "Mesa 4",
        "type": "En Local",
        "status": "Nuevo",
        "items": [
            {"name": "Encebollado", "quantity": 2, "price": 6.50, "prepared": True},
            {"name": "Jugo de naranja", "quantity": 3, "price": 2.25},
            {"name": "Cortesía", "quantity": 1},
        ],
    }


# ===== TESTS DE MODELO =====

class TestOrderTotal:
    """Tests del cálculo de totales"""

    def test_total_is_sum_of_price_times_quantity(self, sample_order_data):
        order = Order.model_validate(sample_order_data)
        # 2 x 6.50 + 3 x 2.25 + 1 x 0
        assert order.total == Decimal("19.75")

    def test_item_without_price_counts_as_zero(self):
        item = OrderItem(name="Agua", quantity=2)
        assert item.line_total == Decimal("0")

    def test_empty_order_total_is_zero(self):
        order = Order(id="ord-empty")
        assert order.total == Decimal("0.00")

    def test_total_rounded_to_two_decimals(self):
        order = Order(id="ord-2", items=[OrderItem(name="Café", quantity=3, price=Decimal("1.335"))])
        assert order.total == Decimal("4.01")

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            OrderItem(name="Café", quantity=0, price=Decimal("1.00"))

    def test_camel_case_aliases(self, sample_order_data):
        order = Order.model_validate(sample_order_data)
        assert order.customer_name == "Mesa 4"
        assert order.type == OrderType.DINE_IN
        assert order.to_wire()["customerName"] == "Mesa 4"


class TestOrderStatus:
    """Tests del ciclo de estados"""

    @pytest.mark.parametrize(
        "current, expected",
        [
            (OrderStatus.NEW, OrderStatus.READY),
            (OrderStatus.READY, OrderStatus.COMPLETED),
            (OrderStatus.COMPLETED, OrderStatus.NEW),
        ],
    )
    def test_cycle(self, current, expected):
        assert next_status(current) == expected

    def test_advance_status_returns_copy_and_keeps_billed(self, sample_order_data):
        order = Order.model_validate({**sample_order_data, "billed": True})
        updated = order.advance_status()

        assert updated.status == OrderStatus.READY
        assert order.status == OrderStatus.NEW
        assert updated.billed is True


# ===== TESTS DE ENDPOINTS =====

class TestOrderEndpoints:
    """Tests de los endpoints de pedidos"""

    def test_order_total_endpoint(self, sample_order_data):
        response = client.post("/orders/total", json=sample_order_data)

        assert response.status_code == 200
        data = response.json()
        assert data["orderId"] == "ord-001"
        assert Decimal(str(data["total"])) == Decimal("19.75")
        assert data["itemCount"] == 3

    def test_advance_status_endpoint(self, sample_order_data):
        sample_order_data["status"] = "Completado"
        response = client.post("/orders/advance-status", json=sample_order_data)

        assert response.status_code == 200
        data = response.json()
        assert data["previousStatus"] == "Completado"
        assert data["status"] == "Nuevo"

    def test_invalid_status_rejected(self, sample_order_data):
        sample_order_data["status"] = "Cancelado"
        response = client.post("/orders/advance-status", json=sample_order_data)
        assert response.status_code == 422
