"""
Helper para cálculo de IVA

Los precios del menú ya incluyen IVA, por lo que el desglose se obtiene
despejando la base imponible del total:

    subtotal = total / (1 + tarifa/100)
    iva      = total - subtotal
"""

from decimal import Decimal
from typing import Optional, Union

from pos_billing.common.mixins import money
from pos_billing.core.config import settings
from pos_billing.modules.billing.schemas import TaxBreakdown

Number = Union[Decimal, int, float, str]


def resolve_tax_rate(tax_rate: Optional[Number] = None) -> Decimal:
    """Tarifa explícita o, en su defecto, la tarifa por defecto configurada"""
    if tax_rate is None:
        return Decimal(str(settings.DEFAULT_TAX_RATE))
    return Decimal(str(tax_rate))


def calculate_tax_breakdown(total: Number, tax_rate: Optional[Number] = None) -> TaxBreakdown:
    """
    Calcular subtotal e IVA a partir de un total con IVA incluido

    Args:
        total: Total con IVA incluido
        tax_rate: Porcentaje de IVA (p.ej. 15). None usa DEFAULT_TAX_RATE

    Returns:
        TaxBreakdown con subtotal + iva == total
    """
    rate = resolve_tax_rate(tax_rate)
    if rate < 0:
        raise ValueError("La tarifa de IVA no puede ser negativa")

    total_amount = money(total)
    subtotal = money(total_amount / (Decimal('1') + rate / Decimal('100')))
    # El IVA se obtiene por diferencia para que la suma cuadre al centavo
    tax = money(total_amount - subtotal)

    return TaxBreakdown(subtotal=subtotal, tax=tax, total=total_amount, tax_rate=rate)
