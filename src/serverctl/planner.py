"""Diff desired against last-applied configuration and plan remote actions.

The planner is pure: it never talks to the remote API. It decides which kind
of action a change needs and expands it into an ordered list of steps that
the orchestrator executes one by one.

ORDERING:
- A move tears peering sessions down before the server is deleted and
  unlinked, and restores them only after the rebuilt server is RUNNING.
- A rename deletes and rebuilds the server but never touches peering
  sessions and never unlinks.
- Move and rename together tear down once.
- A rebuild waits for its job, when the API returns one, before waiting
  for the server to come back RUNNING.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .models import ResourceSpec, SpecValidationError
from .resolver import location_key

logger = logging.getLogger(__name__)


class PlanKind(str, Enum):
    CREATE = "create"
    NOOP = "noop"
    REBUILD = "rebuild"
    DELETE = "delete"


class Step(str, Enum):
    """A single orchestrator step."""

    RESOLVE_TARGET = "resolve_target"
    CREATE_RESOURCE = "create_resource"
    TEARDOWN_PEERING = "teardown_peering"
    DELETE_RESOURCE = "delete_resource"
    AWAIT_JOB = "await_job"
    UNLINK_RESOURCE = "unlink_resource"
    REBUILD_RESOURCE = "rebuild_resource"
    AWAIT_RUNNING = "await_running"
    RESTORE_PEERING = "restore_peering"
    READ_BACK = "read_back"
    MARK_ABSENT = "mark_absent"


# Fields whose change requires a rebuild
WATCHED_FIELDS: tuple[str, ...] = (
    "location",
    "location_id",
    "image",
    "image_id",
    "hostname",
    "params",
)


@dataclass(frozen=True)
class ActionPlan:
    """Ordered plan for one reconciliation pass."""

    kind: PlanKind
    spec: ResourceSpec | None = None
    move_required: bool = False
    rename_required: bool = False
    cancel_billing: bool = False
    changed_fields: tuple[str, ...] = ()

    @property
    def steps(self) -> tuple[Step, ...]:
        match self.kind:
            case PlanKind.CREATE:
                return (
                    Step.RESOLVE_TARGET,
                    Step.CREATE_RESOURCE,
                    Step.AWAIT_RUNNING,
                    Step.READ_BACK,
                )
            case PlanKind.NOOP:
                return (Step.READ_BACK,)
            case PlanKind.DELETE:
                return (
                    Step.TEARDOWN_PEERING,
                    Step.DELETE_RESOURCE,
                    Step.AWAIT_JOB,
                    Step.MARK_ABSENT,
                )

        steps = [Step.RESOLVE_TARGET]
        if self.move_required:
            steps += [
                Step.TEARDOWN_PEERING,
                Step.DELETE_RESOURCE,
                Step.AWAIT_JOB,
                Step.UNLINK_RESOURCE,
            ]
        elif self.rename_required:
            steps += [Step.DELETE_RESOURCE, Step.AWAIT_JOB]
        steps += [Step.REBUILD_RESOURCE, Step.AWAIT_JOB, Step.AWAIT_RUNNING]
        if self.move_required:
            steps.append(Step.RESTORE_PEERING)
        steps.append(Step.READ_BACK)
        return tuple(steps)


def _unset(value: Any) -> bool:
    return value in (None, "", 0)


def _params_equal(old: str | None, new: str | None) -> bool:
    if _unset(old) and _unset(new):
        return True
    try:
        return json.loads(old or "null") == json.loads(new or "null")
    except json.JSONDecodeError:
        return old == new


def field_changed(name: str, previous: ResourceSpec, desired: ResourceSpec) -> bool:
    """Whether a watched field differs between two configurations.

    Leaving location or location_id unset in the desired configuration is
    not a change: the other member of the pair carries the location.
    """
    old = getattr(previous, name)
    new = getattr(desired, name)

    match name:
        case "location":
            return not _unset(new) and location_key(old) != location_key(new)
        case "location_id":
            return not _unset(new) and old != new
        case "params":
            return not _params_equal(old, new)

    if _unset(old) and _unset(new):
        return False
    return old != new


def changed_fields(previous: ResourceSpec, desired: ResourceSpec) -> tuple[str, ...]:
    return tuple(name for name in WATCHED_FIELDS if field_changed(name, previous, desired))


def plan_create(desired: ResourceSpec) -> ActionPlan:
    return ActionPlan(kind=PlanKind.CREATE, spec=desired)


def plan_delete(cancel_billing: bool = True) -> ActionPlan:
    return ActionPlan(kind=PlanKind.DELETE, cancel_billing=cancel_billing)


def plan_update(previous: ResourceSpec | None, desired: ResourceSpec) -> ActionPlan:
    """Plan the actions that take a server from previous to desired.

    Args:
        previous: Last-applied configuration, None if never created.
        desired: Validated desired configuration.

    Returns:
        The action plan.

    Raises:
        SpecValidationError: The change cannot be applied in place.
    """
    if previous is None:
        return plan_create(desired)

    if previous.plan != desired.plan:
        raise SpecValidationError(
            f"plan cannot be changed in place ({previous.plan!r} -> {desired.plan!r}); "
            "the server must be replaced"
        )

    changes = changed_fields(previous, desired)
    if not changes:
        return ActionPlan(kind=PlanKind.NOOP, spec=desired)

    rename_required = "hostname" in changes and not _unset(previous.hostname)
    move_required = ("location" in changes and not _unset(location_key(previous.location))) or (
        "location_id" in changes and not _unset(previous.location_id)
    )

    plan = ActionPlan(
        kind=PlanKind.REBUILD,
        spec=desired,
        move_required=move_required,
        rename_required=rename_required,
        changed_fields=changes,
    )
    logger.info(
        "Planned rebuild",
        extra={
            "changed_fields": list(changes),
            "move_required": move_required,
            "rename_required": rename_required,
            "steps": [step.value for step in plan.steps],
        },
    )
    return plan
