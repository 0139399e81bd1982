"""
Colaborador de facturación (backend del restaurante)

El backend genera el XML, lo firma, lo envía al SRI y asigna los
secuenciales. Aquí solo se construyen las peticiones y se normalizan
las respuestas.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pos_billing.common.backend_client import BackendClient

logger = logging.getLogger(__name__)


def _clean_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v not in (None, "")}


def _as_number(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def split_page(result: Any) -> Tuple[List[Dict[str, Any]], int, Optional[int]]:
    """Normaliza {data, pagination:{page,total}} o una lista simple"""
    if isinstance(result, list):
        return result, len(result), None
    if not isinstance(result, dict):
        return [], 0, None
    items = result.get("data") or []
    pagination = result.get("pagination") or {}
    total = pagination.get("total", len(items))
    return items, int(total), pagination.get("page")


class BillingClient:
    def __init__(self, backend: Optional[BackendClient] = None):
        self.backend = backend or BackendClient()

    def generate_xml(
        self,
        order: Dict[str, Any],
        client: Dict[str, Any],
        tax_rate: Optional[Decimal] = None,
        logo_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """POST /billing/generate-xml: genera, firma y envía la factura al SRI"""
        payload = {"order": order, "client": client, "taxRate": _as_number(tax_rate)}
        if logo_url:
            payload["logoUrl"] = logo_url
        return self.backend.post("/billing/generate-xml", payload)

    def check_status(self, access_key: str) -> Dict[str, Any]:
        return self.backend.post(f"/billing/check-status/{access_key}", {})

    def generate_credit_note(
        self,
        bill_id: str,
        reason: str,
        custom_description: Optional[str] = None,
        tax_rate: Optional[Decimal] = None
    ) -> Any:
        payload = {"billId": bill_id, "reason": reason, "taxRate": _as_number(tax_rate)}
        if custom_description:
            payload["customDescription"] = custom_description
        return self.backend.post("/credit-notes", payload)

    def get_credit_notes(
        self,
        page: int = 1,
        limit: int = 20,
        bill_id: Optional[str] = None,
        reason: Optional[str] = None,
        customer_identification: Optional[str] = None
    ) -> Any:
        params = _clean_params({
            "page": page,
            "limit": limit,
            "billId": bill_id,
            "reason": reason,
            "customerIdentification": customer_identification,
        })
        return self.backend.get("/credit-notes", params=params)

    def check_credit_note_status(self, access_key: str) -> Any:
        return self.backend.post("/credit-notes/check-status", {"accessKey": access_key})

    def get_all(
        self,
        page: int = 1,
        limit: int = 50,
        document_number: Optional[str] = None,
        customer_identification: Optional[str] = None,
        document_type: Optional[str] = None
    ) -> Any:
        """GET /bills paginado y filtrado"""
        params = _clean_params({
            "page": page,
            "limit": limit,
            "documentNumber": document_number,
            "customerIdentification": customer_identification,
            "documentType": document_type,
        })
        return self.backend.get("/bills", params=params)

    def reset_system(self) -> Any:
        """Borra facturas y notas de crédito, reinicia secuenciales y desmarca órdenes"""
        logger.warning("Requesting billing system reset on backend")
        return self.backend.post("/bills/reset", {})
