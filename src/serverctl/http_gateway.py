"""NetActuate API v2 client implementing the remote gateway contract.

Every request carries the API key as the ``key`` query parameter. Responses
are JSON envelopes::

    {"result": "success", "code": 200, "message": "...", "data": ...}

SECURITY: The API key travels in the query string, so it is redacted from
every error message raised by this module.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

import requests

from .config import DEFAULT_API_URL, DEFAULT_HTTP_TIMEOUT_SECONDS, Config
from .gateway import GatewayError, NotFoundError, TransientRemoteError
from .models import (
    Image,
    IPFamily,
    Job,
    JobStatus,
    Location,
    PeeringSession,
    ResourceState,
    ServerStatus,
)

logger = logging.getLogger(__name__)

USER_AGENT = "serverctl/0.1.0"

# Raw job status codes; anything else is still in progress
JOB_PENDING_CODE = 0
JOB_SUCCESS_CODE = 5
JOB_FAILURE_CODE = 6

# Maximum characters of a response body quoted in an error
MAX_ERROR_BODY_CHARS = 200


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_server(data: dict[str, Any], resource_id: int = 0) -> ResourceState:
    """Build observed state from a server payload.

    A server that is not installed reports neither hostname nor image.
    """
    installed = bool(_int(data.get("installed")))
    return ResourceState(
        id=_int(data.get("mbpkgid") or data.get("id")) or resource_id,
        hostname=str(data.get("fqdn") or data.get("name") or "") if installed else "",
        installed=installed,
        power_status=str(data.get("power_status") or ""),
        status=ServerStatus.parse(data.get("status")),
        location_id=_int(data.get("location_id")),
        location=str(data.get("location") or ""),
        image_id=_int(data.get("os_id")) if installed else 0,
        image=str(data.get("os") or "") if installed else "",
        plan=str(data.get("package") or ""),
        primary_ipv4=str(data.get("primary_ipv4") or ""),
        primary_ipv6=str(data.get("primary_ipv6") or ""),
    )


def parse_session(data: dict[str, Any], resource_id: int) -> PeeringSession:
    ip_type = str(data.get("provider_ip_type") or "")
    return PeeringSession(
        id=_int(data.get("id")),
        resource_id=_int(data.get("mbpkgid")) or resource_id,
        group_id=_int(data.get("group_id")),
        group_name=str(data.get("group_name") or ""),
        ip_family=IPFamily.IPV6 if ip_type.lower() == "ipv6" else IPFamily.IPV4,
        customer_ip=str(data.get("customer_peer_ip") or ""),
        provider_ip=str(data.get("provider_peer_ip") or ""),
        customer_asn=_int(data.get("customer_asn")),
        provider_asn=_int(data.get("provider_asn")),
        locked=bool(_int(data.get("locked"))),
        config_status=str(data.get("config_status") or ""),
        state=str(data.get("state") or ""),
    )


_JOB_STATUSES = {
    JOB_PENDING_CODE: JobStatus.PENDING,
    JOB_SUCCESS_CODE: JobStatus.SUCCEEDED,
    JOB_FAILURE_CODE: JobStatus.FAILED,
}


def parse_job_status(code: Any) -> JobStatus:
    return _JOB_STATUSES.get(_int(code), JobStatus.RUNNING)


class NetActuateGateway:
    """Remote gateway backed by the NetActuate HTTP API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_URL,
        timeout: int = DEFAULT_HTTP_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    @classmethod
    def from_config(cls, config: Config) -> NetActuateGateway:
        return cls(
            api_key=config.require_api_key(),
            base_url=config.api_url,
            timeout=config.http_timeout_seconds,
        )

    def _redact(self, text: str) -> str:
        return text.replace(self._api_key, "***") if self._api_key else text

    def _request(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and unwrap the response envelope.

        Raises:
            NotFoundError: HTTP 404 or an envelope code of 404.
            TransientRemoteError: Any other failure.
        """
        query = {"key": self._api_key, **(params or {})}
        try:
            response = self._session.request(
                method,
                urljoin(self._base_url, path),
                params=query,
                data=data,
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransientRemoteError(self._redact(f"{method} {path} failed: {e}")) from e

        logger.debug(
            "API response",
            extra={"method": method, "path": path, "status_code": response.status_code},
        )

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if response.status_code >= 400:
            body = self._redact(response.text[:MAX_ERROR_BODY_CHARS])
            raise TransientRemoteError(
                f"{method} {path} returned HTTP {response.status_code}: {body}"
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise TransientRemoteError(f"{method} {path} returned invalid JSON") from e

        if not isinstance(envelope, dict) or "data" not in envelope:
            return envelope

        code = _int(envelope.get("code")) or response.status_code
        message = self._redact(str(envelope.get("message") or ""))
        if code == 404:
            raise NotFoundError(f"{method} {path}: {message or 'not found'}")
        if envelope.get("result", "success") != "success" or code >= 400:
            raise TransientRemoteError(f"{method} {path} failed with code {code}: {message}")
        return envelope["data"]

    # -------------------------------------------------------------------------
    # Servers
    # -------------------------------------------------------------------------

    def create_resource(self, request: dict[str, Any]) -> tuple[int, int | None]:
        data = self._request("POST", "cloud/server/buy_build", data=request) or {}
        resource_id = _int(data.get("mbpkgid"))
        if not resource_id:
            raise TransientRemoteError("cloud/server/buy_build returned no server id")
        return resource_id, _int(data.get("build")) or None

    def read_resource(self, resource_id: int) -> ResourceState:
        try:
            data = self._request("GET", f"cloud/server/{resource_id}")
        except GatewayError as e:
            e.resource_id = resource_id
            raise
        return parse_server(data or {}, resource_id)

    def rebuild_resource(self, resource_id: int, request: dict[str, Any]) -> int | None:
        data = self._request("POST", f"cloud/server/build/{resource_id}", data=request)
        return _int((data or {}).get("build")) or None

    def delete_resource(self, resource_id: int, cancel_billing: bool) -> int:
        data = self._request(
            "POST",
            f"cloud/server/delete/{resource_id}",
            data={"cancel_billing": int(cancel_billing)},
        )
        job_id = _int((data or {}).get("id"))
        if not job_id:
            raise TransientRemoteError(
                f"delete of server {resource_id} returned no job id", resource_id
            )
        return job_id

    def unlink_resource(self, resource_id: int) -> None:
        self._request("POST", f"cloud/server/unlink/{resource_id}")

    def get_job(self, resource_id: int, job_id: int) -> Job:
        data = self._request("GET", f"cloud/server/{resource_id}/jobs/{job_id}") or {}
        return Job(
            id=_int(data.get("id")) or job_id,
            resource_id=resource_id,
            status=parse_job_status(data.get("status")),
        )

    def list_locations(self) -> list[Location]:
        return [
            Location(id=_int(item.get("id")), name=str(item.get("name") or ""))
            for item in self._request("GET", "cloud/locations") or []
        ]

    def list_images(self) -> list[Image]:
        return [
            Image(id=_int(item.get("id")), name=str(item.get("os") or ""))
            for item in self._request("GET", "cloud/images") or []
        ]

    # -------------------------------------------------------------------------
    # BGP sessions
    # -------------------------------------------------------------------------

    def list_peering_sessions(self, resource_id: int) -> list[PeeringSession]:
        return [
            parse_session(item, resource_id)
            for item in self._request("GET", f"bgp/sessions/{resource_id}") or []
        ]

    def create_peering_sessions(
        self, resource_id: int, group_id: int, ipv6: bool, redundant: bool
    ) -> PeeringSession:
        data = self._request(
            "POST",
            f"bgp/create_sessions/{resource_id}",
            data={"group_id": group_id, "ipv6": int(ipv6), "redundant": int(redundant)},
        )
        return parse_session(data or {}, resource_id)

    def delete_peering_session(self, session_id: int) -> None:
        self._request("POST", f"bgp/delete_session/{session_id}")
