"""
NsxClient — JSON-first HTTP client for the NSX Policy API (VPC subnets).

This module provides a single, reusable HTTP client with:
  * Consistent JSON helpers (`get_json`, `patch_json`, `delete_json`)
  * Path builders for VPC-scoped subnet resources
  * Typed errors (NotFoundError, InvalidRequestError, ConflictError, ...)
  * Resource helpers so the service does not duplicate HTTP plumbing

The client never retries; realization polling and callers own retry policy.

Example:
    client = NsxClient("https://nsx.local", token, options=ClientOptions(verify=False))
    subnet = client.get_subnet("default", "proj-1", "vpc-1", "web_3fK9a")
"""
from __future__ import annotations

import json
import logging
import warnings
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
import urllib3

from .constants import DEFAULT_IP_POOL
from .errors import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    NsxApiError,
    NsxConnectionError,
    PageMaxError,
)

log = logging.getLogger("subnetsync.http")

API_PREFIX = "policy/api/v1"

_LOG_PREVIEW = 600
_REDACT_KEYS = {"token", "authorization", "password", "api_token", "x-api-key"}

# NSX search errors meaning "page_size too large"
_PAGE_MAX_ERROR_CODES = {60576, 255}


def _short_json(obj: Any, limit: int = _LOG_PREVIEW) -> str:
    try:
        if isinstance(obj, (dict, list)):
            s = json.dumps(obj, ensure_ascii=False)
        else:
            s = str(obj)
        return s[:limit]
    except (TypeError, ValueError):
        return f"<unserializable:{type(obj).__name__}>"


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if str(k).lower() in _REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact(v)
        return out
    if isinstance(obj, list):
        return [_redact(x) for x in obj]
    return obj


@dataclass
class ClientOptions:
    """Runtime options for :class:`NsxClient`.

    Attributes:
        verify: If False, SSL certificate verification is disabled.
        timeout_sec: Per-request timeout (seconds).
        suppress_insecure_warning: Silence urllib3 warnings when ``verify`` is off.
    """
    verify: bool = True
    timeout_sec: float = 30
    suppress_insecure_warning: bool = True


class NsxClient:
    """HTTP client for the NSX Policy API.

    Args:
        base_url: NSX manager URL (e.g. ``https://nsx.local``).
        api_token: Token sent as ``Authorization: Bearer``.
        options: Optional :class:`ClientOptions`.
        session: Optional pre-built ``requests.Session`` (tests, custom adapters).
    """

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        *,
        options: Optional[ClientOptions] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.options = options or ClientOptions()
        self.log = logger or log
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "subnetsync/NsxClient",
        })
        if api_token:
            self.session.headers["Authorization"] = f"Bearer {api_token}"

        if not self.options.verify and self.options.suppress_insecure_warning:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # ---------------- low-level ----------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _req(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Perform an HTTP request and return the JSON response (or empty dict).

        Raises:
            NsxConnectionError: On connection-level errors.
            NsxApiError (or a subclass): On non-2xx responses.
        """
        url = self._url(path)
        if json_body is not None:
            self.log.debug("HTTP %s %s body=%s", method, url, _short_json(_redact(json_body)))
        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                json=json_body,
                params=params,
                timeout=self.options.timeout_sec,
                verify=self.options.verify,
            )
        except requests.RequestException as exc:
            self.log.error("HTTP %s %s failed: %s", method, url, exc)
            raise NsxConnectionError(status=0, url=url, message=str(exc)) from exc

        if resp.status_code >= 400:
            err = self._error_from_response(resp, url)
            self.log.warning("HTTP %s %s -> %s: %s", method, url, resp.status_code, resp.text[:200])
            raise err

        self.log.debug("HTTP %s %s -> %s", method, url, resp.status_code)
        if not resp.text:
            return {}
        try:
            return resp.json()
        except ValueError:
            self.log.warning("Non-JSON response from %s %s, returning empty dict", method, url)
            return {}

    @staticmethod
    def _error_from_response(resp: requests.Response, url: str) -> NsxApiError:
        body = resp.text or ""
        error_code: Optional[int] = None
        message = ""
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            if isinstance(data.get("error_code"), int):
                error_code = data["error_code"]
            message = str(data.get("error_message") or "")

        status = resp.status_code
        if error_code in _PAGE_MAX_ERROR_CODES:
            cls = PageMaxError
        elif status == 404:
            cls = NotFoundError
        elif status == 400:
            cls = InvalidRequestError
        elif status in (409, 412):
            cls = ConflictError
        else:
            cls = NsxApiError
        return cls(status=status, url=url, body=body, message=message, error_code=error_code)

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET a JSON resource and return it as a dict (empty dict on no-content)."""
        return self._req("GET", path, params=params)

    def patch_json(self, path: str, data: Dict[str, Any], params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """PATCH a JSON payload and return the parsed JSON response."""
        return self._req("PATCH", path, json_body=data, params=params)

    def delete_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """DELETE a JSON resource and return the parsed JSON response (if any)."""
        return self._req("DELETE", path, params=params)

    # ---------------- path builders ----------------

    @staticmethod
    def vpc_path(org: str, project: str, vpc: str) -> str:
        return f"orgs/{quote(org)}/projects/{quote(project)}/vpcs/{quote(vpc)}"

    @classmethod
    def subnet_path(cls, org: str, project: str, vpc: str, subnet_id: str) -> str:
        return f"{API_PREFIX}/{cls.vpc_path(org, project, vpc)}/subnets/{quote(subnet_id)}"

    @classmethod
    def ip_pool_path(cls, org: str, project: str, vpc: str, subnet_id: str, pool: str = DEFAULT_IP_POOL) -> str:
        return f"{cls.subnet_path(org, project, vpc, subnet_id)}/ip-pools/{quote(pool)}"

    # ---------------- subnets ----------------

    def patch_subnet(self, org: str, project: str, vpc: str, subnet: Dict[str, Any]) -> Dict[str, Any]:
        return self.patch_json(self.subnet_path(org, project, vpc, subnet["id"]), subnet)

    def get_subnet(self, org: str, project: str, vpc: str, subnet_id: str) -> Dict[str, Any]:
        return self.get_json(self.subnet_path(org, project, vpc, subnet_id))

    def get_by_path(self, policy_path: str) -> Dict[str, Any]:
        """GET an object by its NSX policy path (``/orgs/...``)."""
        return self.get_json(f"{API_PREFIX}/{policy_path.lstrip('/')}")

    def delete_subnet(self, org: str, project: str, vpc: str, subnet_id: str) -> None:
        self.delete_json(self.subnet_path(org, project, vpc, subnet_id))

    def list_subnet_status(self, org: str, project: str, vpc: str, subnet_id: str) -> List[Dict[str, Any]]:
        data = self.get_json(f"{self.subnet_path(org, project, vpc, subnet_id)}/status")
        return list(data.get("results") or [])

    def patch_org_root(self, org_root: Dict[str, Any]) -> Dict[str, Any]:
        return self.patch_json(f"{API_PREFIX}/orgs-root", org_root, params={"enforce_revision_check": "false"})

    # ---------------- IP pools ----------------

    def get_ip_pool(self, org: str, project: str, vpc: str, subnet_id: str) -> Dict[str, Any]:
        return self.get_json(self.ip_pool_path(org, project, vpc, subnet_id))

    def list_ip_allocations(self, org: str, project: str, vpc: str, subnet_id: str) -> List[Dict[str, Any]]:
        data = self.get_json(f"{self.ip_pool_path(org, project, vpc, subnet_id)}/ip-allocations")
        return list(data.get("results") or [])

    def delete_ip_allocation(self, org: str, project: str, vpc: str, subnet_id: str, allocation_id: str) -> None:
        path = f"{self.ip_pool_path(org, project, vpc, subnet_id)}/ip-allocations/{quote(allocation_id)}"
        self.delete_json(path)

    # ---------------- realization / search ----------------

    def list_realized_entities(self, org: str, project: str, intent_path: str) -> List[Dict[str, Any]]:
        path = f"{API_PREFIX}/orgs/{quote(org)}/projects/{quote(project)}/realized-state/realized-entities"
        data = self.get_json(path, params={"intent_path": intent_path})
        return list(data.get("results") or [])

    def search_query(self, query: str, *, cursor: Optional[str] = None, page_size: Optional[int] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {"query": query}
        if cursor:
            params["cursor"] = cursor
        if page_size:
            params["page_size"] = int(page_size)
        return self.get_json(f"{API_PREFIX}/search/query", params=params)
