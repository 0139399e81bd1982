"""
Caché explícita de la configuración del restaurante

Reglas:
- store(): se llama solo tras un fetch/update exitoso; reemplaza la instantánea
- invalidate(): marca la instantánea como obsoleta (p.ej. tras emitir)
- snapshot(): devuelve la última instantánea buena, o los valores por
  defecto si nunca se obtuvo una (fallback cuando el backend falla)

Opcionalmente persiste la instantánea en un archivo JSON para arrancar
sin "parpadeo" de valores por defecto.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Optional

from pydantic import ValidationError

from pos_billing.modules.settings.schemas import RestaurantConfig

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: RestaurantConfig
    stale: bool = False


class ConfigCache:
    def __init__(self, cache_file: Optional[str] = None):
        self._lock = RLock()
        self._entry: Optional[CacheEntry] = None
        self._file = Path(cache_file) if cache_file else None
        if self._file:
            self._load_from_file()

    def _load_from_file(self) -> None:
        if not self._file.exists():
            return
        try:
            data = json.loads(self._file.read_text(encoding="utf-8"))
            self._entry = CacheEntry(
                value=RestaurantConfig.model_validate(data),
                # Lo leído de disco nunca se considera fresco
                stale=True
            )
            logger.info(f"Loaded cached config snapshot from {self._file}")
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Error parsing cached config {self._file}: {e}")

    def _write_file(self, config: RestaurantConfig) -> None:
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            self._file.write_text(json.dumps(config.to_wire(), ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not persist config snapshot to {self._file}: {e}")

    def store(self, config: RestaurantConfig) -> None:
        with self._lock:
            self._entry = CacheEntry(value=config)
            if self._file:
                self._write_file(config)

    def invalidate(self) -> None:
        with self._lock:
            if self._entry:
                self._entry.stale = True

    @property
    def has_snapshot(self) -> bool:
        return self._entry is not None

    @property
    def is_stale(self) -> bool:
        with self._lock:
            return self._entry is None or self._entry.stale

    def snapshot(self) -> RestaurantConfig:
        with self._lock:
            if self._entry is None:
                return RestaurantConfig()
            return self._entry.value.model_copy(deep=True)
