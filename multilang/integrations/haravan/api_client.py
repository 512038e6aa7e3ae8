"""
Haravan Admin REST client for metafield mutations.

Used both by synchronous request handlers and by the metafield job worker.
Every call carries the tenant's bearer token; the client itself is shared
across tenants.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

API_TIMEOUT_SECONDS = 30.0


class HaravanAPIError(Exception):
    """Error from the Haravan Admin API."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details or {}


def _metafield_value(value: Any, value_type: Optional[str]) -> Any:
    # Objects and explicit json values are sent as JSON strings
    if value_type == "json" or isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def metafield_create_path(owner_type: Optional[str], owner_id: Optional[str]) -> str:
    """Endpoint path for creating a metafield on the given owner."""
    if owner_type == "shop":
        return "/com/metafields.json?owner_resource=shop"
    if owner_type == "product":
        return f"/com/products/{owner_id}/metafields.json"
    if owner_type == "collection":
        return f"/com/custom_collections/{owner_id}/metafields.json"
    return f"/com/{owner_type}s/{owner_id}/metafields.json"


class HaravanAPIClient:
    """Async client for the Haravan Admin API."""

    def __init__(
        self,
        base_url: str = "https://apis.haravan.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=API_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _request(self, method: str, path: str, token: str, json_body: Optional[dict] = None) -> Dict[str, Any]:
        if not token:
            raise HaravanAPIError("Token is required")

        try:
            response = await self._client.request(
                method,
                path,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.error(
                "Haravan API request failed",
                extra={"method": method, "path": path, "error_type": type(exc).__name__},
            )
            raise HaravanAPIError(f"Haravan API unreachable: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Haravan API error response",
                extra={"method": method, "path": path, "status_code": response.status_code},
            )
            raise HaravanAPIError(
                f"Haravan API returned {response.status_code}",
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise HaravanAPIError("Haravan API returned invalid JSON", status_code=response.status_code) from exc

    async def create_metafield(self, token: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a metafield.

        ``values`` carries type, objectid, namespace, key, value,
        value_type and an optional description.
        """
        metafield = {
            "namespace": values.get("namespace"),
            "key": values.get("key"),
            "value": _metafield_value(values.get("value"), values.get("value_type")),
            "value_type": values.get("value_type") or "string",
        }
        if values.get("description"):
            metafield["description"] = values["description"]

        path = metafield_create_path(values.get("type"), values.get("objectid"))
        data = await self._request("POST", path, token, {"metafield": metafield})
        if not data.get("metafield"):
            raise HaravanAPIError("Failed to create metafield")
        return data["metafield"]

    async def update_metafield(self, token: str, values: Dict[str, Any]) -> Dict[str, Any]:
        metafield_id = values.get("metafieldid")
        if not metafield_id:
            raise HaravanAPIError("metafieldid is required for update")

        metafield = {
            "value": _metafield_value(values.get("value"), values.get("value_type")),
            "value_type": values.get("value_type") or "string",
        }
        if values.get("description"):
            metafield["description"] = values["description"]

        data = await self._request("PUT", f"/com/metafields/{metafield_id}.json", token, {"metafield": metafield})
        if not data.get("metafield"):
            raise HaravanAPIError("Failed to update metafield")
        return data["metafield"]

    async def delete_metafield(self, token: str, metafield_id: str) -> Dict[str, Any]:
        if not metafield_id:
            raise HaravanAPIError("metafieldid is required for delete")
        return await self._request("DELETE", f"/com/metafields/{metafield_id}.json", token)
