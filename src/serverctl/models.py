"""Desired and observed data model.

Desired configuration is a pydantic model validated at the boundary (fail
fast, fail loudly): no remote call is made for a spec that fails here.
Observed entities returned by the gateway are plain dataclasses.
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_LABEL = r"([a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9\-]*[a-zA-Z0-9])"
HOSTNAME_PATTERN = rf"^({_LABEL}\.)*{_LABEL}$"

# Groups in which exactly one member must be set
LOCATION_KEYS = ("location", "location_id")
IMAGE_KEYS = ("image", "image_id")
CREDENTIAL_KEYS = ("password", "ssh_key_id", "ssh_key")
BILLING_KEYS = ("package_billing_opt_in", "package_billing_contract_id")

EXACTLY_ONE_OF: tuple[tuple[str, ...], ...] = (
    LOCATION_KEYS,
    IMAGE_KEYS,
    CREDENTIAL_KEYS,
    BILLING_KEYS,
)


class SpecValidationError(ValueError):
    """Raised when a desired configuration cannot be applied as requested."""

    pass


def _is_set(value: Any) -> bool:
    return value not in (None, "", 0)


def _b64(text: str | None) -> str:
    return base64.b64encode((text or "").encode()).decode()


# =============================================================================
# Desired configuration
# =============================================================================


class ResourceSpec(BaseModel):
    """Desired configuration of a server."""

    model_config = {"extra": "ignore", "frozen": True}

    hostname: str
    plan: str = Field(min_length=1)

    location: str | None = None
    location_id: int | None = None

    image: str | None = None
    image_id: int | None = None

    password: str | None = Field(None, repr=False)
    ssh_key_id: int | None = None
    ssh_key: str | None = None

    package_billing: Literal["usage", "package"] = "usage"
    package_billing_opt_in: str | None = None
    package_billing_contract_id: str | None = None

    # Additional JSON parameters passed verbatim to the build API
    params: str | None = None

    cloud_config: str | None = None
    user_data: str | None = None
    user_data_base64: str | None = None

    @field_validator("hostname")
    @classmethod
    def validate_hostname(cls, v: str) -> str:
        if not re.match(HOSTNAME_PATTERN, v):
            raise ValueError(f"{v!r} is not a valid hostname")
        return v

    @field_validator("params")
    @classmethod
    def validate_params(cls, v: str | None) -> str | None:
        if v:
            try:
                json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"params must be a JSON document: {e}") from e
        return v

    @model_validator(mode="after")
    def validate_groups(self) -> ResourceSpec:
        for group in EXACTLY_ONE_OF:
            present = [key for key in group if _is_set(getattr(self, key))]
            if len(present) != 1:
                raise ValueError(
                    f"exactly one of {', '.join(group)} must be set, got "
                    f"{', '.join(present) if present else 'none'}"
                )

        if self.package_billing == "package" and self.package_billing_opt_in != "yes":
            raise ValueError(
                "when package_billing is set to package, package_billing_opt_in must be set to yes"
            )
        if self.package_billing == "usage" and not self.package_billing_contract_id:
            raise ValueError(
                "package_billing_contract_id must be set to your contract ID with NetActuate"
            )
        return self

    def to_request(self, location_id: int, image_id: int) -> dict[str, Any]:
        """Render the create/build payload with resolved location and image ids.

        cloud_config and user_data are base64 encoded; user_data_base64 is
        already encoded and takes precedence over user_data.
        """
        request: dict[str, Any] = {
            "plan": self.plan,
            "location": location_id,
            "image": image_id,
            "fqdn": self.hostname,
            "package_billing": self.package_billing,
            "cloud_config": _b64(self.cloud_config),
            "script_content": self.user_data_base64 or _b64(self.user_data),
        }
        optional = {
            "password": self.password,
            "ssh_key": self.ssh_key,
            "ssh_key_id": self.ssh_key_id,
            "package_billing_contract_id": self.package_billing_contract_id,
            "params": self.params,
        }
        request.update({key: value for key, value in optional.items() if _is_set(value)})
        return request


# =============================================================================
# Observed state
# =============================================================================


class ServerStatus(str, Enum):
    """Lifecycle status reported for a server."""

    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    PENDING = "PENDING"
    TERMINATED = "TERMINATED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> ServerStatus:
        try:
            return cls((value or "").upper())
        except ValueError:
            return cls.UNKNOWN


class IPFamily(str, Enum):
    """Address family of a peering session."""

    IPV4 = "IPv4"
    IPV6 = "IPv6"


class JobStatus(str, Enum):
    """Status of an asynchronous remote job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass(frozen=True)
class ResourceState:
    """Observed state of a server as reported by the remote API."""

    id: int
    hostname: str = ""
    installed: bool = False
    power_status: str = ""
    status: ServerStatus = ServerStatus.UNKNOWN
    location_id: int = 0
    location: str = ""
    image_id: int = 0
    image: str = ""
    plan: str = ""
    primary_ipv4: str = ""
    primary_ipv6: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hostname": self.hostname,
            "installed": self.installed,
            "power_status": self.power_status,
            "status": self.status.value,
            "location_id": self.location_id,
            "location": self.location,
            "image_id": self.image_id,
            "image": self.image,
            "plan": self.plan,
            "primary_ipv4": self.primary_ipv4,
            "primary_ipv6": self.primary_ipv6,
        }


@dataclass(frozen=True)
class PeeringSession:
    """A BGP session attached to a server."""

    id: int
    resource_id: int
    group_id: int
    ip_family: IPFamily
    group_name: str = ""
    customer_ip: str = ""
    provider_ip: str = ""
    customer_asn: int = 0
    provider_asn: int = 0
    locked: bool = False
    config_status: str = ""
    state: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "group_id": self.group_id,
            "group_name": self.group_name,
            "ip_family": self.ip_family.value,
            "customer_ip": self.customer_ip,
            "provider_ip": self.provider_ip,
            "customer_asn": self.customer_asn,
            "provider_asn": self.provider_asn,
            "locked": self.locked,
            "config_status": self.config_status,
            "state": self.state,
        }


@dataclass(frozen=True)
class Job:
    """Handle on an asynchronous mutating operation."""

    id: int
    resource_id: int
    status: JobStatus


@dataclass(frozen=True)
class Location:
    id: int
    name: str


@dataclass(frozen=True)
class Image:
    id: int
    name: str
