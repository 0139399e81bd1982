"""
Cliente HTTP hacia el backend del restaurante

Centraliza las llamadas al backend (facturación SRI, configuración):
- URL base, timeout y token Bearer tomados de la configuración
- Desempaqueta el formato {success, data} de las respuestas
- Convierte cualquier fallo en BillingAPIError conservando el mensaje
  original del backend (puede traer indicaciones del SRI)
"""
import logging
from typing import Any, Dict, Optional

import requests

from pos_billing.core.config import settings

logger = logging.getLogger(__name__)


class BillingAPIError(Exception):
    """Error devuelto por el backend o por el transporte hacia él."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details

    def __str__(self) -> str:
        return self.message


def extract_error_message(payload: Any, status_code: int) -> str:
    """Obtener el mensaje de error tal cual lo envía el backend"""
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if payload.get("message"):
            return str(payload["message"])
    return f"HTTP error! status: {status_code}"


class BackendClient:
    """Sesión HTTP compartida con el backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = (base_url or settings.billing_api_base).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.BILLING_API_TIMEOUT
        self.token = token if token is not None else settings.BILLING_API_TOKEN
        self.session = session or requests.Session()

    def with_token(self, token: Optional[str]) -> "BackendClient":
        """Copia del cliente que reenvía el token del operador"""
        if not token or token == self.token:
            return self
        return BackendClient(self.base_url, self.timeout, token, self.session)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.Timeout:
            logger.error(f"{method} {url} timed out after {self.timeout}s")
            raise BillingAPIError(
                "El servidor de facturación no respondió a tiempo. "
                "Verifique el estado del comprobante antes de reintentar."
            )
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise BillingAPIError(f"No se pudo conectar con el servidor de facturación: {e}")

        return self._process_response(method, url, response)

    def _process_response(self, method: str, url: str, response) -> Any:
        content_type = response.headers.get("content-type") or ""
        if "application/json" not in content_type:
            logger.error(f"{method} {url} returned non-JSON response ({response.status_code})")
            raise BillingAPIError("Respuesta no es JSON", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            raise BillingAPIError("Respuesta JSON inválida", status_code=response.status_code)

        if response.status_code >= 400:
            message = extract_error_message(payload, response.status_code)
            error = payload.get("error") if isinstance(payload, dict) else None
            logger.error(f"{method} {url} failed ({response.status_code}): {message}")
            raise BillingAPIError(
                message,
                status_code=response.status_code,
                code=error.get("code") if isinstance(error, dict) else None,
                details=error.get("details") if isinstance(error, dict) else None
            )

        if isinstance(payload, dict) and payload.get("success") is True and "data" in payload:
            if "pagination" in payload:
                return {"data": payload["data"], "pagination": payload["pagination"]}
            return payload["data"]
        if isinstance(payload, dict) and payload.get("success") is False and payload.get("error"):
            # Algunos endpoints responden 200 con success=false
            error = payload["error"]
            raise BillingAPIError(
                extract_error_message(payload, response.status_code),
                status_code=response.status_code,
                code=error.get("code") if isinstance(error, dict) else None,
                details=error.get("details") if isinstance(error, dict) else None
            )
        return payload

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, data: Any = None) -> Any:
        return self.request("POST", path, json=data if data is not None else {})

    def put(self, path: str, data: Any) -> Any:
        return self.request("PUT", path, json=data)

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)
