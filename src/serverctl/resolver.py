"""Name-or-id resolution for locations and images."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .gateway import RemoteGateway
from .models import ResourceSpec

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """Raised when a location or image name does not exist remotely."""

    pass


@dataclass(frozen=True)
class ResolvedTarget:
    """Numeric location and image ids fixed for one reconciliation pass."""

    location_id: int
    image_id: int


def location_key(name: str | None) -> str:
    """Comparable form of a location name: its first word, upper-cased.

    The API reports locations as e.g. "LAX - Los Angeles, CA", while specs
    usually carry just "lax".
    """
    if not name or not name.split():
        return ""
    return name.split()[0].upper()


def resolve_location(gateway: RemoteGateway, spec: ResourceSpec) -> int:
    if spec.location_id:
        return spec.location_id

    wanted = location_key(spec.location)
    if not wanted:
        raise ResolutionError("Please provide a location or location_id")

    for location in gateway.list_locations():
        if location.name == spec.location or location_key(location.name) == wanted:
            return location.id

    raise ResolutionError(f"Provided location {spec.location!r} doesn't exist")


def resolve_image(gateway: RemoteGateway, spec: ResourceSpec) -> int:
    if spec.image_id:
        return spec.image_id

    if not spec.image:
        raise ResolutionError("Please provide an image or image_id")

    for image in gateway.list_images():
        if image.name == spec.image:
            return image.id

    raise ResolutionError(f"Provided image {spec.image!r} doesn't exist")


def resolve_target(gateway: RemoteGateway, spec: ResourceSpec) -> ResolvedTarget:
    """Resolve the spec's location and image to numeric ids.

    Ids given directly are used as-is without a remote lookup.
    """
    target = ResolvedTarget(
        location_id=resolve_location(gateway, spec),
        image_id=resolve_image(gateway, spec),
    )
    logger.debug(
        "Resolved target",
        extra={"location_id": target.location_id, "image_id": target.image_id},
    )
    return target
