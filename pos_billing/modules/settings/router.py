from fastapi import APIRouter, Depends

from pos_billing.dependencies.backendDependencies import get_config_service, get_config_synchronizer
from pos_billing.modules.settings.service import ConfigService, ConfigSynchronizer
from pos_billing.modules.settings.schemas import (
    RestaurantConfig, RestaurantConfigUpdate, ConfirmationRequest, NextNumbers
)

# Router de configuración del restaurante
router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/", response_model=RestaurantConfig, response_model_by_alias=True)
def get_settings(service: ConfigService = Depends(get_config_service)):
    """
    Obtener la configuración vigente

    Si el backend no responde se devuelve la última instantánea en caché
    (o los valores por defecto).
    """
    return service.get_config()


@router.patch("/", response_model=RestaurantConfig, response_model_by_alias=True)
def update_settings(
    changes: RestaurantConfigUpdate,
    service: ConfigService = Depends(get_config_service)
):
    """
    Actualizar parcialmente la configuración

    brandColors y billing se fusionan con los valores actuales.
    """
    return service.update_config(changes)


@router.post("/refresh", response_model=RestaurantConfig, response_model_by_alias=True)
def refresh_settings(synchronizer: ConfigSynchronizer = Depends(get_config_synchronizer)):
    """Forzar la recarga de la configuración desde el backend"""
    return synchronizer.refresh()


@router.post("/reset", response_model=RestaurantConfig, response_model_by_alias=True)
def reset_settings(
    request: ConfirmationRequest,
    service: ConfigService = Depends(get_config_service)
):
    """
    Restaurar la configuración por defecto

    Requiere escribir literalmente la frase RESTAURAR CONFIG.
    """
    return service.reset_config(request.confirmation)


@router.get("/next-numbers", response_model=NextNumbers, response_model_by_alias=True)
def next_numbers(synchronizer: ConfigSynchronizer = Depends(get_config_synchronizer)):
    """
    Próximos números de factura y nota de crédito

    Es solo una estimación (secuencial actual + 1); el número definitivo
    lo asigna el backend al emitir.
    """
    return synchronizer.next_numbers()
