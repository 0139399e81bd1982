"""
Tests para el módulo de Configuración

- Formato de número de documento EEE-PPP-NNNNNNNNN
- Merge de actualizaciones parciales (brandColors y billing anidados)
- Caché explícita: fallback, invalidación y persistencia en archivo
- Sincronizador: refresco tras emisión y estimación del próximo número
- Restauración con frase de confirmación literal
- Los secuenciales nunca viajan en el PUT de configuración
"""

import copy
from decimal import Decimal

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from pos_billing.common.backend_client import BackendClient, BillingAPIError
from pos_billing.dependencies.backendDependencies import get_config_synchronizer, get_operator_backend
from pos_billing.main import app
from pos_billing.modules.settings.cache import ConfigCache
from pos_billing.modules.settings.client import ConfigClient
from pos_billing.modules.settings.schemas import RestaurantConfig, RestaurantConfigUpdate, TaxRegime
from pos_billing.modules.settings.service import (
    ConfigService, ConfigSynchronizer, format_document_number, merge_config
)


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = {"content-type": "application/json"}

    def json(self):
        return self._payload


class DummySession:
    """Responde según (método, ruta); registra cada llamada"""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        path = url.split("/api", 1)[-1]
        self.calls.append({"method": method, "path": path, "json": json})
        route = self.routes.get((method, path))
        if route is None:
            return DummyResponse(503, {"success": False, "error": {"message": "Servicio no disponible"}})
        if callable(route):
            return route(json)
        return route


BACKEND_CONFIG = {
    "name": "La Huequita",
    "ruc": "1790012344001",
    "businessName": "La Huequita S.A.",
    "fiscalEmail": "facturas@lahuequita.ec",
    "brandColors": {"primary": "#111111", "secondary": "#222222", "accent": "#333333"},
    "billing": {
        "establishment": "1",
        "emissionPoint": "2",
        "regime": "General",
        "currentSequenceFactura": 123,
        "currentSequenceNotaCredito": 7,
        "taxRate": 15,
        "environment": "1",
    },
}


def merge_into(stored, changes):
    """Como el backend: los sub-objetos se fusionan con lo guardado"""
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(stored.get(key), dict):
            merge_into(stored[key], value)
        else:
            stored[key] = value
    return stored


# ===== FIXTURES =====

@pytest.fixture
def backend_state():
    return copy.deepcopy(BACKEND_CONFIG)


@pytest.fixture
def session(backend_state):
    return DummySession({
        ("GET", "/config"): lambda json: DummyResponse(200, {"success": True, "data": backend_state}),
        ("PUT", "/config"): lambda json: DummyResponse(
            200, {"success": True, "data": merge_into(backend_state, json)}
        ),
    })


@pytest.fixture
def backend(session):
    return BackendClient(base_url="http://backend.test/api", timeout=5, session=session)


@pytest.fixture
def synchronizer(backend):
    return ConfigSynchronizer(ConfigClient(backend), ConfigCache())


@pytest.fixture
def api_client(backend, synchronizer):
    app.dependency_overrides[get_operator_backend] = lambda: backend
    app.dependency_overrides[get_config_synchronizer] = lambda: synchronizer
    yield TestClient(app)
    app.dependency_overrides.clear()


# ===== TESTS DE FUNCIONES PURAS =====

class TestDocumentNumber:
    @pytest.mark.parametrize(
        "establishment, emission_point, sequence, expected",
        [
            ("001", "001", 1, "001-001-000000001"),
            ("1", "2", 124, "001-002-000000124"),
            ("010", "100", 999999999, "010-100-999999999"),
        ],
    )
    def test_format(self, establishment, emission_point, sequence, expected):
        assert format_document_number(establishment, emission_point, sequence) == expected


class TestMergeConfig:
    """Tests del merge de actualizaciones parciales"""

    def test_nested_billing_merge_keeps_other_fields(self):
        current = RestaurantConfig.model_validate(BACKEND_CONFIG)
        changes = RestaurantConfigUpdate.model_validate({"billing": {"taxRate": 12}})

        merged = merge_config(current, changes)

        assert merged.billing.tax_rate == Decimal("12")
        assert merged.billing.establishment == "001"
        assert merged.billing.current_sequence_factura == 123
        assert merged.name == "La Huequita"

    def test_nested_brand_colors_merge(self):
        current = RestaurantConfig.model_validate(BACKEND_CONFIG)
        changes = RestaurantConfigUpdate.model_validate({"brandColors": {"primary": "#FF0000"}})

        merged = merge_config(current, changes)

        assert merged.brand_colors.primary == "#FF0000"
        assert merged.brand_colors.secondary == "#222222"

    def test_top_level_fields_shallow_merge(self):
        current = RestaurantConfig.model_validate(BACKEND_CONFIG)
        merged = merge_config(current, RestaurantConfigUpdate(phone="022345678"))

        assert merged.phone == "022345678"
        assert merged.ruc == "1790012344001"

    def test_codes_are_zero_padded(self):
        config = RestaurantConfig.model_validate(BACKEND_CONFIG)
        assert config.billing.emission_point == "002"
        assert config.billing.regime == TaxRegime.GENERAL


# ===== TESTS DE CACHÉ =====

class TestConfigCache:
    """Tests de la caché explícita"""

    def test_empty_cache_returns_defaults(self):
        cache = ConfigCache()
        assert cache.has_snapshot is False
        assert cache.is_stale is True
        assert cache.snapshot() == RestaurantConfig()

    def test_store_and_invalidate(self):
        cache = ConfigCache()
        cache.store(RestaurantConfig.model_validate(BACKEND_CONFIG))
        assert cache.is_stale is False

        cache.invalidate()
        assert cache.is_stale is True
        # La instantánea sigue disponible como fallback
        assert cache.snapshot().name == "La Huequita"

    def test_snapshot_is_a_copy(self):
        cache = ConfigCache()
        cache.store(RestaurantConfig.model_validate(BACKEND_CONFIG))
        snapshot = cache.snapshot()
        snapshot.billing.current_sequence_factura = 999
        assert cache.snapshot().billing.current_sequence_factura == 123

    def test_file_persistence_loads_as_stale(self, tmp_path):
        cache_file = tmp_path / "config.json"
        ConfigCache(str(cache_file)).store(RestaurantConfig.model_validate(BACKEND_CONFIG))

        reloaded = ConfigCache(str(cache_file))

        assert reloaded.has_snapshot is True
        assert reloaded.is_stale is True
        assert reloaded.snapshot().billing.current_sequence_factura == 123

    def test_corrupt_file_is_ignored(self, tmp_path):
        cache_file = tmp_path / "config.json"
        cache_file.write_text("{no es json", encoding="utf-8")

        cache = ConfigCache(str(cache_file))

        assert cache.has_snapshot is False


# ===== TESTS DEL SINCRONIZADOR =====

class TestConfigSynchronizer:
    """Tests del sincronizador de secuenciales"""

    def test_refresh_stores_backend_config(self, synchronizer, session):
        config = synchronizer.refresh()

        assert config.name == "La Huequita"
        assert synchronizer.cache.is_stale is False
        assert session.calls[0]["method"] == "GET"

    def test_refresh_failure_keeps_cached_snapshot(self, backend, session):
        cache = ConfigCache()
        cache.store(RestaurantConfig.model_validate(BACKEND_CONFIG))
        session.routes.clear()

        config = ConfigSynchronizer(ConfigClient(backend), cache).refresh()

        assert config.name == "La Huequita"

    def test_refresh_failure_without_snapshot_returns_defaults(self, backend, session):
        session.routes.clear()
        config = ConfigSynchronizer(ConfigClient(backend), ConfigCache()).refresh()
        assert config == RestaurantConfig()

    def test_invalid_backend_config_keeps_snapshot(self, synchronizer, session):
        """Una configuración mal formada se trata como falla del backend"""
        synchronizer.refresh()
        session.routes[("GET", "/config")] = DummyResponse(
            200, {"success": True, "data": {"billing": {"establishment": "ABCD"}}}
        )

        config = synchronizer.refresh()

        assert config.name == "La Huequita"
        assert config.billing.current_sequence_factura == 123
        assert synchronizer.is_refreshing is False

    def test_client_wraps_invalid_config(self, backend, session):
        session.routes[("GET", "/config")] = DummyResponse(200, {"success": True, "data": {"billing": {"taxRate": 140}}})

        with pytest.raises(BillingAPIError) as exc_info:
            ConfigClient(backend).get()

        assert exc_info.value.message == "La configuración recibida del backend no es válida"

    def test_next_numbers_are_estimates(self, synchronizer, session):
        numbers = synchronizer.next_numbers()

        assert numbers.invoice == "001-002-000000124"
        assert numbers.credit_note == "001-002-000000008"
        assert numbers.is_estimate is True
        # Solo lectura: nunca se escribe el secuencial
        assert all(call["method"] == "GET" for call in session.calls)

    def test_scheduled_refresh_blocks_until_run(self, synchronizer):
        synchronizer.refresh()
        pending = []

        synchronizer.schedule_refresh(pending.append)

        assert synchronizer.is_refreshing is True
        assert synchronizer.cache.is_stale is True
        assert synchronizer.wait_until_fresh(timeout=0) is False

        pending[0]()

        assert synchronizer.is_refreshing is False
        assert synchronizer.wait_until_fresh(timeout=0) is True
        assert synchronizer.cache.is_stale is False

    def test_inline_refresh(self, synchronizer, session):
        synchronizer.schedule_refresh()
        assert synchronizer.is_refreshing is False
        assert len(session.calls) == 1


# ===== TESTS DEL SERVICIO =====

class TestConfigService:
    """Tests de actualización y restauración"""

    def test_update_puts_merged_config(self, synchronizer, session):
        service = ConfigService(synchronizer)

        saved = service.update_config(RestaurantConfigUpdate.model_validate({"billing": {"taxRate": 12}}))

        put = [call for call in session.calls if call["method"] == "PUT"][0]
        assert Decimal(str(put["json"]["billing"]["taxRate"])) == Decimal("12")
        assert put["json"]["billing"]["establishment"] == "001"
        assert put["json"]["name"] == "La Huequita"
        assert saved.billing.tax_rate == Decimal("12")
        assert synchronizer.cache.snapshot().billing.tax_rate == Decimal("12")
        assert "currentSequenceFactura" not in put["json"]["billing"]
        assert "currentSequenceNotaCredito" not in put["json"]["billing"]

    def test_update_with_stale_snapshot_keeps_backend_sequences(self, synchronizer, session, backend_state):
        """Una instantánea vieja no puede retroceder los secuenciales del backend"""
        synchronizer.refresh()
        # Otra emisión avanzó el secuencial y su refresco falló
        backend_state["billing"]["currentSequenceFactura"] = 124
        get_route = session.routes.pop(("GET", "/config"))
        pending = []
        synchronizer.schedule_refresh(pending.append)
        pending[0]()
        assert synchronizer.current().billing.current_sequence_factura == 123
        session.routes[("GET", "/config")] = get_route

        saved = ConfigService(synchronizer).update_config(RestaurantConfigUpdate(name="Otro nombre"))

        put = [call for call in session.calls if call["method"] == "PUT"][0]
        assert "currentSequenceFactura" not in put["json"]["billing"]
        assert saved.name == "Otro nombre"
        assert saved.billing.current_sequence_factura == 124
        assert backend_state["billing"]["currentSequenceFactura"] == 124
        assert synchronizer.current().billing.current_sequence_factura == 124

    def test_update_failure_is_bad_gateway(self, synchronizer, session):
        synchronizer.refresh()
        del session.routes[("PUT", "/config")]

        with pytest.raises(HTTPException) as exc_info:
            ConfigService(synchronizer).update_config(RestaurantConfigUpdate(name="Otro"))

        assert exc_info.value.status_code == 502
        assert exc_info.value.detail == "Servicio no disponible"

    def test_reset_wrong_phrase_no_network_call(self, synchronizer, session):
        with pytest.raises(HTTPException) as exc_info:
            ConfigService(synchronizer).reset_config("restaurar config")

        assert exc_info.value.status_code == 400
        assert session.calls == []

    def test_reset_puts_defaults_without_sequences(self, synchronizer, session, backend_state):
        """Restaurar la configuración no reinicia los secuenciales"""
        saved = ConfigService(synchronizer).reset_config("RESTAURAR CONFIG")

        put = session.calls[-1]
        assert put["method"] == "PUT"
        assert "currentSequenceFactura" not in put["json"]["billing"]
        assert put["json"]["name"] == "RestoAI"
        assert saved.name == "RestoAI"
        assert saved.billing.establishment == "001"
        assert saved.billing.current_sequence_factura == 123
        assert backend_state["billing"]["currentSequenceNotaCredito"] == 7


# ===== TESTS DE ENDPOINTS =====

class TestSettingsEndpoints:
    def test_get_settings(self, api_client):
        response = api_client.get("/settings/")

        assert response.status_code == 200
        data = response.json()
        assert data["businessName"] == "La Huequita S.A."
        assert data["billing"]["currentSequenceFactura"] == 123

    def test_next_numbers(self, api_client):
        response = api_client.get("/settings/next-numbers")

        assert response.status_code == 200
        assert response.json()["invoice"] == "001-002-000000124"
        assert response.json()["creditNote"] == "001-002-000000008"

    def test_patch_settings(self, api_client):
        response = api_client.patch("/settings/", json={"brandColors": {"accent": "#00FF00"}})

        assert response.status_code == 200
        assert response.json()["brandColors"]["accent"] == "#00FF00"
        assert response.json()["brandColors"]["primary"] == "#111111"

    def test_sequences_not_editable(self, api_client, session):
        response = api_client.patch("/settings/", json={"billing": {"currentSequenceFactura": 1}})

        assert response.status_code == 200
        assert response.json()["billing"]["currentSequenceFactura"] == 123

    def test_reset_requires_exact_phrase(self, api_client, session):
        response = api_client.post("/settings/reset", json={"confirmation": "RESTAURAR"})

        assert response.status_code == 400
        assert not any(call["method"] == "PUT" for call in session.calls)
