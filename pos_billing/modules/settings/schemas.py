from pydantic import Field, field_validator
from decimal import Decimal
from typing import Optional, Literal
from enum import Enum

from pos_billing.common.mixins import CamelModel, WireDecimal


class TaxRegime(str, Enum):
    GENERAL = "General"
    RIMPE_POPULAR = "RIMPE - Negocio Popular"
    RIMPE_EMPRENDEDOR = "RIMPE - Emprendedor"


class BrandColors(CamelModel):
    primary: str = "#3B82F6"
    secondary: str = "#8B5CF6"
    accent: str = "#10B981"


class BillingConfig(CamelModel):
    """
    Configuración de facturación SRI.

    Los secuenciales solo los avanza el backend al emitir; aquí se leen
    para mostrar una estimación del próximo número.
    """
    establishment: str = Field("001", pattern=r'^\d{1,3}$')
    emission_point: str = Field("001", pattern=r'^\d{1,3}$')
    regime: TaxRegime = TaxRegime.GENERAL
    current_sequence_factura: int = Field(0, ge=0)
    current_sequence_nota_credito: int = Field(0, ge=0)
    current_sequence_nota_venta: int = Field(0, ge=0)
    tax_rate: Optional[WireDecimal] = Field(None, ge=0, le=100, description="Porcentaje de IVA, p.ej. 15")
    environment: Optional[Literal["1", "2"]] = Field(None, description="1: Pruebas, 2: Producción")

    @field_validator('establishment', 'emission_point', mode='before')
    @classmethod
    def pad_code(cls, v):
        if isinstance(v, int):
            v = str(v)
        if isinstance(v, str) and v.isdigit():
            return v.zfill(3)
        return v


class RestaurantConfig(CamelModel):
    # Información básica
    name: str = "RestoAI"
    logo: Optional[str] = None
    slogan: Optional[str] = None

    # Contacto
    phone: str = ""
    email: str = ""
    address: str = ""
    website: Optional[str] = None

    # Información fiscal (Ecuador)
    ruc: str = ""
    business_name: str = ""
    fiscal_email: Optional[str] = None
    fiscal_logo: Optional[str] = None
    obligado_contabilidad: bool = False
    contribuyente_especial: Optional[str] = None

    # Regional
    currency: str = "USD"
    currency_symbol: str = "$"
    timezone: str = "America/Guayaquil"
    locale: str = "es-EC"

    brand_colors: BrandColors = Field(default_factory=BrandColors)
    billing: BillingConfig = Field(default_factory=BillingConfig)

    @property
    def invoice_logo(self) -> Optional[str]:
        return self.fiscal_logo or self.logo


class BrandColorsUpdate(CamelModel):
    primary: Optional[str] = None
    secondary: Optional[str] = None
    accent: Optional[str] = None


class BillingConfigUpdate(CamelModel):
    establishment: Optional[str] = Field(None, pattern=r'^\d{1,3}$')
    emission_point: Optional[str] = Field(None, pattern=r'^\d{1,3}$')
    regime: Optional[TaxRegime] = None
    tax_rate: Optional[WireDecimal] = Field(None, ge=0, le=100)
    environment: Optional[Literal["1", "2"]] = None


class RestaurantConfigUpdate(CamelModel):
    """
    Actualización parcial. Los sub-objetos (brandColors, billing) se
    fusionan con los actuales en lugar de reemplazarse.

    Los secuenciales no son editables desde aquí: los avanza el backend
    al emitir y solo se reinician con el reseteo de facturación.
    """
    name: Optional[str] = None
    logo: Optional[str] = None
    slogan: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    ruc: Optional[str] = Field(None, pattern=r'^\d{13}$')
    business_name: Optional[str] = None
    fiscal_email: Optional[str] = None
    fiscal_logo: Optional[str] = None
    obligado_contabilidad: Optional[bool] = None
    contribuyente_especial: Optional[str] = None
    currency: Optional[str] = None
    currency_symbol: Optional[str] = None
    timezone: Optional[str] = None
    locale: Optional[str] = None
    brand_colors: Optional[BrandColorsUpdate] = None
    billing: Optional[BillingConfigUpdate] = None


class ConfirmationRequest(CamelModel):
    confirmation: str = Field(..., description="Frase literal de confirmación")


class NextNumbers(CamelModel):
    """Estimación de los próximos números (no vinculante: el backend asigna)"""
    invoice: str
    credit_note: str
    is_estimate: bool = True
    stale: bool = False
