from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from pos_billing.common.backend_client import BackendClient
from pos_billing.core.config import settings
from pos_billing.modules.billing.client import BillingClient
from pos_billing.modules.billing.ride import RideRenderer
from pos_billing.modules.billing.service import (
    BillingHistoryService, CreditNoteIssuer, InFlightGuard, InvoiceIssuer, ProcessRegistry
)
from pos_billing.modules.settings.cache import ConfigCache
from pos_billing.modules.settings.client import ConfigClient
from pos_billing.modules.settings.service import ConfigService, ConfigSynchronizer

# El token del operador es opcional: si llega se reenvía al backend
bearer_scheme = HTTPBearer(auto_error=False)


# Singletons compartidos entre peticiones
@lru_cache
def get_backend_client() -> BackendClient:
    return BackendClient()


@lru_cache
def get_config_synchronizer() -> ConfigSynchronizer:
    return ConfigSynchronizer(ConfigClient(get_backend_client()), ConfigCache(settings.CONFIG_CACHE_FILE))


@lru_cache
def get_inflight_guard() -> InFlightGuard:
    return InFlightGuard()


@lru_cache
def get_process_registry() -> ProcessRegistry:
    return ProcessRegistry()


@lru_cache
def get_ride_renderer() -> RideRenderer:
    return RideRenderer()


# Dependencias por petición
def get_operator_backend(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)] = None
) -> BackendClient:
    backend = get_backend_client()
    if credentials is None:
        return backend
    return backend.with_token(credentials.credentials)


def get_billing_client(backend: Annotated[BackendClient, Depends(get_operator_backend)]) -> BillingClient:
    return BillingClient(backend)


def get_config_service(
    backend: Annotated[BackendClient, Depends(get_operator_backend)],
    synchronizer: Annotated[ConfigSynchronizer, Depends(get_config_synchronizer)]
) -> ConfigService:
    return ConfigService(synchronizer, ConfigClient(backend))


def get_invoice_issuer(
    client: Annotated[BillingClient, Depends(get_billing_client)],
    synchronizer: Annotated[ConfigSynchronizer, Depends(get_config_synchronizer)],
    guard: Annotated[InFlightGuard, Depends(get_inflight_guard)],
    registry: Annotated[ProcessRegistry, Depends(get_process_registry)]
) -> InvoiceIssuer:
    return InvoiceIssuer(client, synchronizer, guard, registry)


def get_credit_note_issuer(
    client: Annotated[BillingClient, Depends(get_billing_client)],
    synchronizer: Annotated[ConfigSynchronizer, Depends(get_config_synchronizer)],
    guard: Annotated[InFlightGuard, Depends(get_inflight_guard)]
) -> CreditNoteIssuer:
    return CreditNoteIssuer(client, synchronizer, guard)


def get_history_service(
    client: Annotated[BillingClient, Depends(get_billing_client)],
    synchronizer: Annotated[ConfigSynchronizer, Depends(get_config_synchronizer)]
) -> BillingHistoryService:
    return BillingHistoryService(client, synchronizer)


invoice_issuer_dependency = Annotated[InvoiceIssuer, Depends(get_invoice_issuer)]
credit_note_issuer_dependency = Annotated[CreditNoteIssuer, Depends(get_credit_note_issuer)]
history_service_dependency = Annotated[BillingHistoryService, Depends(get_history_service)]
