"""Thin synchronous client for the Dataverse Web API metadata endpoints.

Token acquisition and throttling retries are the caller's concern; the client
sends one request per call and raises ``DataverseError`` on any failure.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from mdv_core.errors import DataverseError

logger = logging.getLogger(__name__)

API_PATH = "/api/data/v9.2"
SOLUTION_HEADER = "MSCRM.SolutionUniqueName"
_ENTITY_ID_RE = re.compile(r"\(([0-9a-fA-F-]{36})\)")


def _quote(value: str) -> str:
    return value.replace("'", "''")


class DataverseClient:
    def __init__(
        self,
        environment_url: str,
        token: str,
        *,
        solution: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not environment_url:
            raise DataverseError("Dataverse environment URL is not configured.")
        if not token:
            raise DataverseError("Dataverse access token is not configured.")
        self.environment_url = environment_url.rstrip("/")
        self.solution = solution
        self._client = httpx.Client(
            base_url=f"{self.environment_url}{API_PATH}",
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Content-Type": "application/json; charset=utf-8",
                "OData-MaxVersion": "4.0",
                "OData-Version": "4.0",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "DataverseClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        in_solution: bool = False,
        allow_missing: bool = False,
        representation: bool = False,
    ) -> Optional[Dict[str, Any]]:
        headers: Dict[str, str] = {}
        if in_solution and self.solution:
            headers[SOLUTION_HEADER] = self.solution
        if representation:
            headers["Prefer"] = "return=representation"

        logger.debug("%s %s", method, path)
        try:
            response = self._client.request(method, path, json=payload, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise DataverseError(f"{method} {path} failed: {exc}") from exc

        if allow_missing and response.status_code == 404:
            return None
        if response.is_error:
            body = _json_body(response)
            detail = body.get("error", {}).get("message") or response.reason_phrase
            raise DataverseError(
                f"{method} {path} returned {response.status_code}: {detail}",
                status_code=response.status_code,
                payload=body,
            )

        body = _json_body(response)
        entity_id = response.headers.get("OData-EntityId", "")
        match = _ENTITY_ID_RE.search(entity_id)
        if match and "id" not in body:
            body["id"] = match.group(1)
        return body

    def whoami(self) -> Dict[str, Any]:
        return self._request("GET", "/WhoAmI")

    def get_publisher(self, unique_name: str) -> Optional[Dict[str, Any]]:
        body = self._request(
            "GET",
            "/publishers",
            params={
                "$select": "publisherid,uniquename,friendlyname,customizationprefix",
                "$filter": f"uniquename eq '{_quote(unique_name)}'",
            },
        )
        rows = body.get("value", [])
        return rows[0] if rows else None

    def create_publisher(
        self,
        unique_name: str,
        friendly_name: str,
        prefix: str,
        option_value_prefix: int = 10000,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/publishers",
            payload={
                "uniquename": unique_name,
                "friendlyname": friendly_name,
                "customizationprefix": prefix,
                "customizationoptionvalueprefix": option_value_prefix,
            },
            representation=True,
        )

    def get_solution(self, unique_name: str) -> Optional[Dict[str, Any]]:
        body = self._request(
            "GET",
            "/solutions",
            params={
                "$select": "solutionid,uniquename,friendlyname,version",
                "$filter": f"uniquename eq '{_quote(unique_name)}'",
            },
        )
        rows = body.get("value", [])
        return rows[0] if rows else None

    def create_solution(
        self,
        unique_name: str,
        friendly_name: str,
        publisher_id: str,
        version: str = "1.0.0.0",
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/solutions",
            payload={
                "uniquename": unique_name,
                "friendlyname": friendly_name,
                "version": version,
                "publisherid@odata.bind": f"/publishers({publisher_id})",
            },
            representation=True,
        )

    def entity_exists(self, logical_name: str) -> bool:
        body = self._request(
            "GET",
            f"/EntityDefinitions(LogicalName='{_quote(logical_name)}')",
            params={"$select": "LogicalName"},
            allow_missing=True,
        )
        return body is not None

    def create_entity(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/EntityDefinitions", payload=metadata, in_solution=True)

    def create_attribute(self, entity_logical_name: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/EntityDefinitions(LogicalName='{_quote(entity_logical_name)}')/Attributes",
            payload=metadata,
            in_solution=True,
        )

    def create_relationship(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/RelationshipDefinitions", payload=metadata, in_solution=True)

    def get_global_choice(self, name: str) -> Optional[Dict[str, Any]]:
        return self._request(
            "GET",
            f"/GlobalOptionSetDefinitions(Name='{_quote(name)}')",
            allow_missing=True,
        )

    def create_global_choice(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/GlobalOptionSetDefinitions", payload=metadata, in_solution=True)


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"value": body}
