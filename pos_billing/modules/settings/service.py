"""
Servicios del módulo de Configuración

- ConfigSynchronizer: refresca la configuración tras cada emisión exitosa
  para que el "próximo número" mostrado refleje lo confirmado por el backend
- ConfigService: lectura, actualización parcial con merge de sub-objetos
  y restauración a valores por defecto con frase de confirmación
"""
import logging
from threading import Event, Lock
from typing import Callable, Optional

from fastapi import HTTPException, status

from pos_billing.common.backend_client import BillingAPIError
from pos_billing.core.config import settings
from pos_billing.modules.settings.cache import ConfigCache
from pos_billing.modules.settings.client import ConfigClient
from pos_billing.modules.settings.schemas import (
    RestaurantConfig, RestaurantConfigUpdate, NextNumbers
)

logger = logging.getLogger(__name__)


def format_document_number(establishment: str, emission_point: str, sequence: int) -> str:
    """Formato SRI: 001-001-000000001"""
    return f"{str(establishment).zfill(3)}-{str(emission_point).zfill(3)}-{int(sequence):09d}"


def normalize_document_number(config: RestaurantConfig, number: Optional[str]) -> str:
    """Acepta el número completo (001-001-000000001) o solo el secuencial"""
    if not number:
        return ""
    if "-" in number or not number.isdigit():
        return number
    return format_document_number(config.billing.establishment, config.billing.emission_point, int(number))


def merge_config(current: RestaurantConfig, changes: RestaurantConfigUpdate) -> RestaurantConfig:
    """Merge superficial de campos y profundo de brandColors y billing"""
    updates = changes.model_dump(exclude_unset=True, exclude_none=True)
    brand_colors = updates.pop("brand_colors", None)
    billing = updates.pop("billing", None)

    merged = current.model_copy(update=updates, deep=True)
    if brand_colors:
        merged.brand_colors = merged.brand_colors.model_copy(update=brand_colors)
    if billing:
        merged.billing = merged.billing.model_copy(update=billing)
    # Revalidar el resultado completo
    return RestaurantConfig.model_validate(merged.model_dump())


class ConfigSynchronizer:
    """Mantiene la caché de configuración alineada con el backend."""

    def __init__(self, client: Optional[ConfigClient] = None, cache: Optional[ConfigCache] = None):
        self.client = client or ConfigClient()
        self.cache = cache or ConfigCache(settings.CONFIG_CACHE_FILE)
        self._fresh = Event()
        self._fresh.set()
        self._refresh_lock = Lock()

    @property
    def is_refreshing(self) -> bool:
        return not self._fresh.is_set()

    def refresh(self) -> RestaurantConfig:
        """
        Obtener la configuración del backend y guardarla en caché.
        Si el backend falla se conserva la última instantánea (o los defaults).
        """
        with self._refresh_lock:
            try:
                config = self.client.get()
                self.cache.store(config)
                logger.debug("Restaurant config refreshed from backend")
                return config
            except BillingAPIError as e:
                logger.error(f"Failed to fetch restaurant config, using cached snapshot: {e}")
                return self.cache.snapshot()
            finally:
                self._fresh.set()

    def schedule_refresh(self, runner: Optional[Callable[[Callable[[], object]], None]] = None) -> None:
        """
        Marcar la configuración como obsoleta y refrescarla.

        `runner` permite ejecutarlo fuera del flujo de la petición (p.ej.
        BackgroundTasks.add_task); la siguiente emisión espera a que termine.
        """
        self._fresh.clear()
        self.cache.invalidate()
        if runner is None:
            self.refresh()
        else:
            runner(self.refresh)

    def wait_until_fresh(self, timeout: Optional[float] = None) -> bool:
        return self._fresh.wait(settings.CONFIG_REFRESH_TIMEOUT if timeout is None else timeout)

    def current(self) -> RestaurantConfig:
        if not self.cache.has_snapshot:
            return self.refresh()
        return self.cache.snapshot()

    def next_invoice_number(self) -> str:
        billing = self.current().billing
        return format_document_number(
            billing.establishment, billing.emission_point, billing.current_sequence_factura + 1
        )

    def next_credit_note_number(self) -> str:
        billing = self.current().billing
        return format_document_number(
            billing.establishment, billing.emission_point, billing.current_sequence_nota_credito + 1
        )

    def next_numbers(self) -> NextNumbers:
        """
        Estimación para mostrar: secuencial actual + 1.
        Nunca se persiste; el backend asigna el número definitivo.
        """
        return NextNumbers(
            invoice=self.next_invoice_number(),
            credit_note=self.next_credit_note_number(),
            stale=self.cache.is_stale
        )


def require_confirmation(provided: str, expected: str) -> None:
    """Las operaciones irreversibles exigen la frase literal exacta"""
    if provided != expected:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Confirmación inválida. Escriba exactamente: {expected}"
        )


class ConfigService:
    def __init__(self, synchronizer: ConfigSynchronizer, client: Optional[ConfigClient] = None):
        self.synchronizer = synchronizer
        self.client = client or synchronizer.client
        self.cache = synchronizer.cache

    def get_config(self) -> RestaurantConfig:
        return self.synchronizer.current()

    def update_config(self, changes: RestaurantConfigUpdate) -> RestaurantConfig:
        """
        Fusiona los cambios con la configuración vigente y la guarda en el backend.
        Los secuenciales no se envían: la instantánea local puede estar desactualizada.
        """
        current = self.synchronizer.current()
        merged = merge_config(current, changes)
        logger.info(f"Updating restaurant config: {sorted(changes.model_dump(exclude_unset=True).keys())}")
        try:
            saved = self.client.update(merged)
        except BillingAPIError as e:
            logger.error(f"Failed to update restaurant config: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
        self.cache.store(saved)
        logger.info("Restaurant config updated successfully")
        return saved

    def reset_config(self, confirmation: str) -> RestaurantConfig:
        """Restaurar la configuración por defecto (requiere frase literal). No toca los secuenciales"""
        require_confirmation(confirmation, settings.RESET_CONFIG_PHRASE)
        logger.warning("Resetting restaurant config to defaults")
        try:
            saved = self.client.update(RestaurantConfig())
        except BillingAPIError as e:
            logger.error(f"Failed to reset restaurant config: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
        self.cache.store(saved)
        return saved
