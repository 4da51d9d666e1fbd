"""Loading desired configuration and host state from disk.

SECURITY: All file reads enforce a size limit. Desired configuration is
validated at the boundary so that no remote call is made for an invalid spec.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_SPEC_FILE_SIZE_BYTES
from .models import ResourceSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when spec or state loading or validation fails."""

    pass


def _read_bounded(path: Path, kind: str) -> str:
    if not path.exists():
        raise SpecLoadError(f"{kind} file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {kind.lower()} file {path}: {e}") from e

    if file_size > MAX_SPEC_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"{kind} file exceeds maximum size of {MAX_SPEC_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {kind.lower()} file {path}: {e}") from e


def validate_spec(data: dict[str, Any], source: str = "spec") -> ResourceSpec:
    """Validate raw desired configuration.

    Raises:
        SpecLoadError: With one line per validation error.
    """
    try:
        return ResourceSpec.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"]) or "spec"
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {source}:\n{error_list}") from e


def load_spec(spec_path: Path) -> ResourceSpec:
    """Load and validate a server spec from YAML.

    Both a flat mapping and a Kubernetes-style wrapper (apiVersion, kind,
    metadata, spec) are accepted.

    Raises:
        SpecLoadError: If the spec cannot be loaded or fails validation.
    """
    content = _read_bounded(spec_path, "Spec")

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {spec_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Spec file must contain a YAML mapping: {spec_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec", {})
        if not isinstance(spec_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {spec_path}")
    else:
        spec_data = raw_data

    spec = validate_spec(spec_data, str(spec_path))
    logger.info("Loaded spec for server '%s' from %s", spec.hostname, spec_path)
    return spec


@dataclass(frozen=True)
class HostState:
    """What the host remembers between passes: the id and last-applied spec."""

    resource_id: int | None = None
    spec: ResourceSpec | None = None
    observed: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "spec": self.spec.model_dump(exclude_none=True) if self.spec else None,
            "observed": self.observed,
        }


def load_state(state_path: Path) -> HostState:
    """Load host state. A missing file means nothing was created yet."""
    if not state_path.exists():
        return HostState()

    content = _read_bounded(state_path, "State")
    try:
        raw = json.loads(content)
    except json.JSONDecodeError as e:
        raise SpecLoadError(f"Invalid JSON in {state_path}: {e}") from e

    if not isinstance(raw, dict):
        raise SpecLoadError(f"State file must contain a JSON object: {state_path}")

    spec_data = raw.get("spec")
    resource_id = raw.get("resource_id")
    if resource_id is not None and not isinstance(resource_id, int):
        raise SpecLoadError(f"resource_id must be an integer in {state_path}")

    return HostState(
        resource_id=resource_id,
        spec=validate_spec(spec_data, str(state_path)) if spec_data else None,
        observed=raw.get("observed"),
    )


def save_state(state_path: Path, state: HostState) -> None:
    """Write host state atomically."""
    tmp_path = state_path.with_suffix(state_path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(state.to_dict(), indent=2) + "\n", encoding="utf-8")
    tmp_path.replace(state_path)
    logger.debug("Saved state to %s", state_path)
