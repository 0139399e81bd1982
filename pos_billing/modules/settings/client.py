import logging
from typing import Any, Optional

from pydantic import ValidationError

from pos_billing.common.backend_client import BackendClient, BillingAPIError
from pos_billing.modules.settings.schemas import RestaurantConfig

logger = logging.getLogger(__name__)

# Solo el backend avanza los secuenciales; nunca viajan en un PUT
SEQUENCE_FIELDS = {"current_sequence_factura", "current_sequence_nota_credito", "current_sequence_nota_venta"}


def writable_payload(config: RestaurantConfig) -> dict:
    return config.model_dump(
        mode="json", by_alias=True, exclude_none=True, exclude={"billing": SEQUENCE_FIELDS}
    )


class ConfigClient:
    """Colaborador de configuración: GET/PUT /config en el backend"""

    def __init__(self, backend: Optional[BackendClient] = None):
        self.backend = backend or BackendClient()

    def _parse(self, data: Any) -> RestaurantConfig:
        try:
            return RestaurantConfig.model_validate(data)
        except ValidationError as e:
            logger.error(f"Backend returned an invalid restaurant config: {e}")
            raise BillingAPIError("La configuración recibida del backend no es válida", details=e.errors())

    def get(self) -> RestaurantConfig:
        return self._parse(self.backend.get("/config"))

    def update(self, config: RestaurantConfig) -> RestaurantConfig:
        """PUT /config; el backend fusiona brandColors y billing con lo guardado"""
        data = self.backend.put("/config", writable_payload(config))
        return self._parse(data)
