"""
RIDE: Representación Impresa del Documento Electrónico

HTML imprimible de una factura emitida, renderizado con Jinja2.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from pos_billing.core.config import settings
from pos_billing.modules.billing.calculator import calculate_tax_breakdown
from pos_billing.modules.billing.schemas import PaymentMethod, RideRequest
from pos_billing.modules.settings.schemas import RestaurantConfig
from pos_billing.modules.settings.service import normalize_document_number

logger = logging.getLogger(__name__)

PAYMENT_METHOD_TEXT = {
    PaymentMethod.NO_FINANCIAL_SYSTEM: "SIN UTILIZACIÓN DEL SISTEMA FINANCIERO",
    PaymentMethod.DEBIT_CARD: "TARJETA DE DÉBITO",
    PaymentMethod.CREDIT_CARD: "TARJETA DE CRÉDITO",
    PaymentMethod.OTHER_FINANCIAL_SYSTEM: "OTROS CON UTILIZACIÓN DEL SISTEMA FINANCIERO",
}


def _money(value) -> str:
    return f"${value:.2f}"


class RideRenderer:
    """Renderiza el RIDE con plantillas Jinja2 de ./templates"""

    def __init__(self, template_dir: Optional[Path] = None):
        template_dir = template_dir or Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml'])
        )
        self.jinja_env.filters["money"] = _money

    def build_context(self, request: RideRequest, config: RestaurantConfig) -> Dict[str, Any]:
        tax_rate = request.tax_rate if request.tax_rate is not None else config.billing.tax_rate
        breakdown = calculate_tax_breakdown(request.order.total, tax_rate)
        client = request.client
        return {
            "config": config,
            "logo": config.invoice_logo,
            "environment": "Producción" if config.billing.environment == "2" else "Pruebas",
            "document_number": normalize_document_number(config, request.invoice_number),
            "access_key": request.access_key or "",
            "authorization_date": request.authorization_date or "",
            "client": {
                "name": client.name or "CONSUMIDOR FINAL",
                "identification": client.identification or settings.FINAL_CONSUMER_ID,
                "phone": client.phone or "S/N",
                "email": client.email or "S/N",
                "address": client.address or "S/N",
                "payment_method": PAYMENT_METHOD_TEXT.get(client.payment_method, "OTROS"),
            },
            "items": [
                {
                    "quantity": item.quantity,
                    "name": item.name,
                    "price": item.price or 0,
                    "total": item.line_total,
                }
                for item in request.order.items
            ],
            "breakdown": breakdown,
        }

    def render(self, request: RideRequest, config: RestaurantConfig) -> str:
        template = self.jinja_env.get_template("ride.html")
        html = template.render(**self.build_context(request, config))
        logger.debug(f"RIDE rendered for order {request.order.id}")
        return html
