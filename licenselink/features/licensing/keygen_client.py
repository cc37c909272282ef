"""
Keygen JSON:API client.

Covers only the calls this service makes: user provisioning and metadata
linking, license issue and listing, token exchange, and webhook event re-fetch.
Product-token calls use KEYGEN_PRODUCT_TOKEN; license listing for a signed-in
user uses that user's own bearer token.
"""
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from licenselink.core.errors import UpstreamError
from licenselink.core.http import send, json_body
from licenselink.models.accounts import License, LicenseAccount

PROVIDER = "keygen"

JSONAPI_HEADERS = {
    "Accept": "application/vnd.api+json",
    "Content-Type": "application/vnd.api+json",
}


def _error_detail(errors: List[Dict[str, Any]]) -> str:
    parts = [e.get("detail") or e.get("title") or e.get("code") for e in errors]
    return "; ".join(p for p in parts if p) or "request rejected"


class KeygenClient:
    """Thin async client for one Keygen account."""

    def __init__(
        self,
        *,
        account_id: str,
        product_token: str,
        base_url: str = "https://api.keygen.sh",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_id = account_id
        self.product_token = product_token
        self.base_url = f"{base_url.rstrip('/')}/v1/accounts/{account_id}"
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        auth: Optional[Tuple[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        headers = dict(JSONAPI_HEADERS)
        if auth is None:
            headers["Authorization"] = f"Bearer {token or self.product_token}"

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            response = await send(client, PROVIDER, method, path, headers=headers, auth=auth, json=json, params=params)

        if allow_not_found and response.status_code == 404:
            return None

        body = json_body(response) or {}
        errors = body.get("errors")
        if response.status_code >= 400 or errors:
            errors = errors or []
            detail = _error_detail(errors) if errors else f"HTTP {response.status_code}"
            raise UpstreamError(PROVIDER, detail, upstream_status=response.status_code, errors=errors)
        return body

    async def authenticate(self, email: str, password: str) -> Tuple[str, Optional[str]]:
        """
        Exchange user credentials for a user bearer token.

        Returns:
            (token, bearer user id)
        """
        body = await self._request("POST", "/tokens", auth=(email, password))
        data = body.get("data") or {}
        token = (data.get("attributes") or {}).get("token")
        if not token:
            raise UpstreamError(PROVIDER, "token response missing token")
        bearer = ((data.get("relationships") or {}).get("bearer") or {}).get("data") or {}
        return token, bearer.get("id")

    async def create_user(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> LicenseAccount:
        body = await self._request(
            "POST",
            "/users",
            json={
                "data": {
                    "type": "users",
                    "attributes": {
                        "email": email,
                        "password": password,
                        "metadata": metadata or {},
                    },
                }
            },
        )
        return LicenseAccount.from_resource(body["data"])

    async def get_user(self, user_id_or_email: str) -> Optional[LicenseAccount]:
        """Retrieve a user by id or email; None when it does not exist."""
        body = await self._request("GET", f"/users/{quote(user_id_or_email, safe='')}", allow_not_found=True)
        if body is None:
            return None
        return LicenseAccount.from_resource(body["data"])

    async def update_user_metadata(
        self,
        user_id: str,
        updates: Dict[str, Any],
        current: Optional[LicenseAccount] = None,
    ) -> LicenseAccount:
        """Merge `updates` into the user's metadata. Keygen replaces metadata wholesale on PATCH."""
        if current is None:
            current = await self.get_user(user_id)
            if current is None:
                raise UpstreamError(PROVIDER, f"user {user_id} not found", upstream_status=404)
        merged = {**current.metadata, **updates}
        body = await self._request(
            "PATCH",
            f"/users/{quote(user_id, safe='')}",
            json={"data": {"type": "users", "attributes": {"metadata": merged}}},
        )
        return LicenseAccount.from_resource(body["data"])

    async def set_user_password(self, user_id: str, password: str) -> LicenseAccount:
        body = await self._request(
            "PATCH",
            f"/users/{quote(user_id, safe='')}",
            json={"data": {"type": "users", "attributes": {"password": password}}},
        )
        return LicenseAccount.from_resource(body["data"])

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{quote(user_id, safe='')}", allow_not_found=True)

    async def create_license(
        self,
        policy_id: str,
        metadata: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> License:
        relationships: Dict[str, Any] = {
            "policy": {"data": {"type": "policies", "id": policy_id}},
        }
        if user_id:
            relationships["user"] = {"data": {"type": "users", "id": user_id}}
        body = await self._request(
            "POST",
            "/licenses",
            json={
                "data": {
                    "type": "licenses",
                    "attributes": {"metadata": metadata},
                    "relationships": relationships,
                }
            },
        )
        return License.from_resource(body["data"])

    async def find_licenses_by_metadata(self, metadata: Dict[str, str]) -> List[License]:
        params = {f"metadata[{key}]": value for key, value in metadata.items()}
        body = await self._request("GET", "/licenses", params=params)
        return [License.from_resource(item) for item in body.get("data") or []]

    async def list_licenses(self, token: str) -> List[Dict[str, Any]]:
        """List the licenses visible to a user token, as raw JSON:API resources."""
        body = await self._request("GET", "/licenses", token=token)
        return body.get("data") or []

    async def get_webhook_event(self, event_id: str) -> Dict[str, Any]:
        """
        Re-fetch a webhook event from the account's event log.

        Raises:
            UpstreamError: with `errors` populated when Keygen does not know the
                event (not sent from this account), without when unreachable
        """
        body = await self._request("GET", f"/webhook-events/{quote(event_id, safe='')}")
        return body.get("data") or {}
