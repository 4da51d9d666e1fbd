"""Plan execution against the remote gateway.

The orchestrator is the only surface a host calls: create, read, update and
delete of one server. Each call plans the pass, then executes its steps in
order. Every asynchronous remote call is followed by a wait. The first fatal
error aborts the pass.

FORWARD-ONLY:
Nothing is reverted on failure. If a destructive step already ran (sessions
deleted, server deleted, unlinked or rebuilt) the error is raised as a
PartialFailureError listing what was done, so an operator can reconcile the
drift by hand.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from .config import Config
from .gateway import GatewayError, NotFoundError, RemoteGateway
from .models import PeeringSession, ResourceSpec, ResourceState, ServerStatus
from .peering import PeeringCoordinator, PeeringSessions, PeeringTemplate
from .planner import ActionPlan, PlanKind, Step, plan_create, plan_delete, plan_update
from .poller import PollTimeoutError, Sleep, wait_for_job, wait_for_status
from .resolver import ResolvedTarget, resolve_target

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Orchestrator state for a single pass."""

    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    AWAITING_COMPLETION = "awaiting_completion"
    RECONCILED = "reconciled"
    FAILED = "failed"


_AWAITING_STEPS = frozenset({Step.AWAIT_JOB, Step.AWAIT_RUNNING, Step.TEARDOWN_PEERING})

# Steps that render the desired spec into a request
_SPEC_STEPS = frozenset({Step.RESOLVE_TARGET, Step.CREATE_RESOURCE, Step.REBUILD_RESOURCE})


class PartialFailureError(Exception):
    """A pass failed after it had already changed remote state."""

    def __init__(
        self,
        resource_id: int | None,
        failed_step: Step,
        completed_steps: list[Step],
        effects: list[str],
        cause: Exception,
    ) -> None:
        self.resource_id = resource_id
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.effects = list(effects)
        completed = ", ".join(step.value for step in completed_steps) or "none"
        super().__init__(
            f"Reconciliation of server {resource_id} failed at step {failed_step.value!r} "
            f"after completing: {completed}. Changes already made: {'; '.join(effects)}. "
            f"Remote state was left as-is and must be reconciled manually. Cause: {cause}"
        )


@dataclass
class ReconcilePass:
    """Working state of one reconciliation pass.

    Values produced by earlier steps are read back through properties that
    fail loudly if a step runs before the one that produces its input.
    """

    plan: ActionPlan
    resource_id: int | None = None
    phase: Phase = Phase.IDLE
    target: ResolvedTarget | None = None
    template: PeeringTemplate | None = None
    job_id: int | None = None
    state: ResourceState | None = None
    completed_steps: list[Step] = field(default_factory=list)
    effects: list[str] = field(default_factory=list)

    @property
    def spec(self) -> ResourceSpec:
        if self.plan.spec is None:
            raise ValueError(f"{self.plan.kind.value} plan carries no desired spec")
        return self.plan.spec

    @property
    def server_id(self) -> int:
        if self.resource_id is None:
            raise RuntimeError("no server id: the server has not been created in this pass")
        return self.resource_id

    @property
    def resolved(self) -> ResolvedTarget:
        if self.target is None:
            raise RuntimeError("location and image were not resolved in this pass")
        return self.target

    @property
    def observed(self) -> ResourceState:
        if self.state is None:
            raise RuntimeError(f"server {self.resource_id} was not read back in this pass")
        return self.state

    def transition(self, phase: Phase) -> None:
        if phase != self.phase:
            logger.debug(
                "Phase transition",
                extra={
                    "resource_id": self.resource_id,
                    "from_phase": self.phase.value,
                    "to_phase": phase.value,
                },
            )
            self.phase = phase


def _check_plan(plan: ActionPlan, resource_id: int | None) -> None:
    """Reject plans that cannot run before any remote call is made."""
    if plan.spec is None and _SPEC_STEPS.intersection(plan.steps):
        raise ValueError(f"{plan.kind.value} plan requires a desired spec")
    if plan.kind == PlanKind.CREATE and resource_id is not None:
        raise ValueError(f"create plan given existing server {resource_id}")
    if plan.kind != PlanKind.CREATE and resource_id is None:
        raise ValueError(f"{plan.kind.value} plan requires a server id")


class Orchestrator:
    """Reconciles one server at a time against the remote gateway.

    Instances hold only the gateway and immutable configuration, so a single
    orchestrator can serve concurrent passes for different servers.
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        config: Config,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._sleep = sleep
        self._coordinator = PeeringCoordinator(gateway, config.drain_poll, sleep)
        self._handlers: dict[Step, Callable[[ReconcilePass], Awaitable[None]]] = {
            Step.RESOLVE_TARGET: self._resolve_target,
            Step.CREATE_RESOURCE: self._create_resource,
            Step.TEARDOWN_PEERING: self._teardown_peering,
            Step.DELETE_RESOURCE: self._delete_resource,
            Step.AWAIT_JOB: self._await_job,
            Step.UNLINK_RESOURCE: self._unlink_resource,
            Step.REBUILD_RESOURCE: self._rebuild_resource,
            Step.AWAIT_RUNNING: self._await_running,
            Step.RESTORE_PEERING: self._restore_peering,
            Step.READ_BACK: self._read_back,
            Step.MARK_ABSENT: self._mark_absent,
        }

    @property
    def peering(self) -> PeeringSessions:
        """Host operations on peering sessions sharing this orchestrator's gateway."""
        return PeeringSessions(self._gateway, self._config.drain_poll, self._sleep)

    # -------------------------------------------------------------------------
    # Host CRUD contract
    # -------------------------------------------------------------------------

    async def create(self, spec: ResourceSpec) -> tuple[int, ResourceState]:
        """Create a server and wait until it is RUNNING.

        If the server was created but never reached RUNNING, the wait error is
        raised unchanged with its resource_id set; the server is left in place.
        """
        run = await self.execute(plan_create(spec))
        return run.server_id, run.observed

    def read(self, resource_id: int) -> ResourceState:
        """Read observed state. Raises NotFoundError if the server is gone."""
        return self._gateway.read_resource(resource_id)

    async def update(
        self,
        resource_id: int,
        previous: ResourceSpec,
        desired: ResourceSpec,
    ) -> ResourceState:
        """Drive a server from its last-applied to its desired configuration.

        Raises:
            SpecValidationError: The change cannot be applied in place.
        """
        run = await self.execute(plan_update(previous, desired), resource_id)
        return run.observed

    async def delete(self, resource_id: int) -> None:
        """Delete a server, cancelling its billing.

        Deleting a server that no longer exists succeeds without a remote
        delete call.
        """
        try:
            self._gateway.read_resource(resource_id)
        except NotFoundError:
            logger.info("Server already absent", extra={"resource_id": resource_id})
            return
        await self.execute(plan_delete(cancel_billing=True), resource_id)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute(self, plan: ActionPlan, resource_id: int | None = None) -> ReconcilePass:
        """Run every step of a plan in order.

        Returns:
            The finished pass, in phase RECONCILED.

        Raises:
            ValueError: The plan lacks the spec or server id its steps need.
            PartialFailureError: A step failed after remote state was changed.
            Exception: Any other first fatal error, unchanged.
        """
        run = ReconcilePass(plan=plan, resource_id=resource_id)
        run.transition(Phase.PLANNING)
        _check_plan(plan, resource_id)
        await self._execute(run)
        return run

    async def _execute(self, run: ReconcilePass) -> None:
        plan = run.plan
        logger.info(
            "Starting reconciliation pass",
            extra={
                "resource_id": run.resource_id,
                "plan": plan.kind.value,
                "steps": [step.value for step in plan.steps],
            },
        )

        for step in plan.steps:
            run.transition(
                Phase.AWAITING_COMPLETION if step in _AWAITING_STEPS else Phase.EXECUTING
            )
            try:
                await self._handlers[step](run)
            except Exception as e:
                run.transition(Phase.FAILED)
                logger.error(
                    "Reconciliation step failed",
                    extra={
                        "resource_id": run.resource_id,
                        "plan": plan.kind.value,
                        "step": step.value,
                        "completed_steps": [s.value for s in run.completed_steps],
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                if run.effects:
                    raise PartialFailureError(
                        run.resource_id, step, run.completed_steps, run.effects, e
                    ) from e
                if isinstance(e, (GatewayError, PollTimeoutError)) and e.resource_id is None:
                    e.resource_id = run.resource_id
                raise
            run.completed_steps.append(step)

        run.transition(Phase.RECONCILED)
        logger.info(
            "Reconciliation pass complete",
            extra={"resource_id": run.resource_id, "plan": plan.kind.value},
        )

    async def _resolve_target(self, run: ReconcilePass) -> None:
        run.target = resolve_target(self._gateway, run.spec)

    async def _create_resource(self, run: ReconcilePass) -> None:
        target = run.resolved
        request = run.spec.to_request(target.location_id, target.image_id)
        run.resource_id, run.job_id = self._gateway.create_resource(request)
        logger.info(
            "Server created",
            extra={
                "resource_id": run.resource_id,
                "hostname": run.spec.hostname,
                "location_id": target.location_id,
                "image_id": target.image_id,
            },
        )

    async def _teardown_peering(self, run: ReconcilePass) -> None:
        resource_id = run.server_id
        captured = self._coordinator.capture(resource_id)
        if captured is None:
            return
        run.template, sessions = captured

        def record(session: PeeringSession) -> None:
            run.effects.append(
                f"deleted BGP session {session.id} ({session.ip_family.value}) "
                f"of group {session.group_id}"
            )

        self._coordinator.delete_sessions(resource_id, sessions, on_deleted=record)
        await self._coordinator.wait_drained(resource_id)

    async def _delete_resource(self, run: ReconcilePass) -> None:
        resource_id = run.server_id
        cancel_billing = run.plan.cancel_billing
        run.job_id = self._gateway.delete_resource(resource_id, cancel_billing)
        run.effects.append(
            f"deleted server {resource_id} (job {run.job_id}, cancel_billing={cancel_billing})"
        )
        logger.info(
            "Server delete requested",
            extra={
                "resource_id": resource_id,
                "job_id": run.job_id,
                "cancel_billing": cancel_billing,
            },
        )

    async def _await_job(self, run: ReconcilePass) -> None:
        if run.job_id is None:
            logger.debug("No job to wait for", extra={"resource_id": run.resource_id})
            return
        await wait_for_job(
            self._gateway, run.server_id, run.job_id, self._config.job_poll, sleep=self._sleep
        )

    async def _unlink_resource(self, run: ReconcilePass) -> None:
        resource_id = run.server_id
        self._gateway.unlink_resource(resource_id)
        run.effects.append(f"unlinked server {resource_id}")
        logger.info("Server unlinked", extra={"resource_id": resource_id})

    async def _rebuild_resource(self, run: ReconcilePass) -> None:
        resource_id = run.server_id
        target = run.resolved
        request = run.spec.to_request(target.location_id, target.image_id)
        run.job_id = self._gateway.rebuild_resource(resource_id, request)
        run.effects.append(
            f"rebuilt server {resource_id} at location {target.location_id} "
            f"with image {target.image_id}"
        )
        logger.info(
            "Server rebuild requested",
            extra={
                "resource_id": resource_id,
                "job_id": run.job_id,
                "location_id": target.location_id,
                "image_id": target.image_id,
                "move_required": run.plan.move_required,
                "rename_required": run.plan.rename_required,
            },
        )

    async def _await_running(self, run: ReconcilePass) -> None:
        run.state = await wait_for_status(
            self._gateway,
            run.server_id,
            ServerStatus.RUNNING,
            self._config.status_poll,
            sleep=self._sleep,
        )

    async def _restore_peering(self, run: ReconcilePass) -> None:
        resource_id = run.server_id
        if run.template is None:
            logger.debug("No BGP sessions to restore", extra={"resource_id": resource_id})
            return
        session = self._coordinator.restore(resource_id, run.template)
        logger.info(
            "BGP sessions recreated",
            extra={"resource_id": resource_id, "session_id": session.id},
        )

    async def _read_back(self, run: ReconcilePass) -> None:
        run.state = self._gateway.read_resource(run.server_id)

    async def _mark_absent(self, run: ReconcilePass) -> None:
        run.state = None
        logger.info("Server deleted", extra={"resource_id": run.resource_id})
