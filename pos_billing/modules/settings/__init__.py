"""
Módulo de Configuración del Restaurante

Agregado de configuración que vive en el backend:
- Identidad fiscal (RUC, razón social, correo fiscal)
- Colores de marca y logos
- Configuración de facturación SRI (establecimiento, punto de emisión,
  régimen, ambiente, IVA y secuenciales)

La caché local es explícita (ConfigCache) y se refresca tras cada emisión
exitosa mediante ConfigSynchronizer. Los secuenciales nunca se incrementan
localmente: el backend es el único que los avanza.
"""

from .schemas import RestaurantConfig, BillingConfig, BrandColors, RestaurantConfigUpdate
from .cache import ConfigCache
from .service import ConfigSynchronizer, ConfigService, format_document_number, merge_config

__all__ = [
    "RestaurantConfig", "BillingConfig", "BrandColors", "RestaurantConfigUpdate",
    "ConfigCache",
    "ConfigSynchronizer", "ConfigService", "format_document_number", "merge_config",
]
