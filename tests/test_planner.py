"""Tests for change planning."""

from __future__ import annotations

import pytest

from conftest import make_spec
from serverctl.models import SpecValidationError
from serverctl.planner import (
    PlanKind,
    Step,
    changed_fields,
    plan_create,
    plan_delete,
    plan_update,
)


class TestPlanUpdate:
    """Tests for plan_update."""

    def test_no_previous_spec_creates(self) -> None:
        plan = plan_update(None, make_spec())
        assert plan.kind == PlanKind.CREATE
        assert plan.steps == (
            Step.RESOLVE_TARGET,
            Step.CREATE_RESOURCE,
            Step.AWAIT_RUNNING,
            Step.READ_BACK,
        )

    def test_identical_specs_are_noop(self) -> None:
        plan = plan_update(make_spec(), make_spec())
        assert plan.kind == PlanKind.NOOP
        assert plan.steps == (Step.READ_BACK,)

    def test_unwatched_field_change_is_noop(self) -> None:
        """Test credentials and user data do not trigger a rebuild."""
        plan = plan_update(make_spec(), make_spec(password="other-pass", user_data="echo"))
        assert plan.kind == PlanKind.NOOP

    def test_location_case_and_suffix_ignored(self) -> None:
        previous = make_spec(location="LAX - Los Angeles, CA")
        assert plan_update(previous, make_spec(location="lax")).kind == PlanKind.NOOP

    def test_setting_previously_unset_location_id_is_not_a_move(self) -> None:
        """Test only a change away from a non-empty previous value relocates."""
        plan = plan_update(make_spec(), make_spec(location=None, location_id=9))
        assert plan.kind == PlanKind.REBUILD
        assert plan.changed_fields == ("location_id",)
        assert not plan.move_required

    def test_unset_location_is_not_a_change(self) -> None:
        """Test dropping location in favour of the same id does not count as a location change."""
        previous = make_spec(location=None, location_id=5)
        desired = make_spec(location=None, location_id=5, image="Debian 12 (20G)")
        assert changed_fields(previous, desired) == ("image",)

    def test_params_compared_as_json(self) -> None:
        previous = make_spec(params='{"a": 1, "b": 2}')
        assert plan_update(previous, make_spec(params='{"b":2,"a":1}')).kind == PlanKind.NOOP
        assert plan_update(previous, make_spec(params='{"a": 2}')).changed_fields == ("params",)

    def test_image_change_rebuilds_in_place(self) -> None:
        plan = plan_update(make_spec(), make_spec(image="Debian 12 (20G)"))
        assert plan.kind == PlanKind.REBUILD
        assert not plan.move_required
        assert not plan.rename_required
        assert plan.steps == (
            Step.RESOLVE_TARGET,
            Step.REBUILD_RESOURCE,
            Step.AWAIT_JOB,
            Step.AWAIT_RUNNING,
            Step.READ_BACK,
        )

    def test_move_steps_in_order(self) -> None:
        """Test a move tears peering down first and restores it after RUNNING."""
        plan = plan_update(
            make_spec(location=None, location_id=5),
            make_spec(location=None, location_id=9),
        )
        assert plan.move_required
        assert plan.steps == (
            Step.RESOLVE_TARGET,
            Step.TEARDOWN_PEERING,
            Step.DELETE_RESOURCE,
            Step.AWAIT_JOB,
            Step.UNLINK_RESOURCE,
            Step.REBUILD_RESOURCE,
            Step.AWAIT_JOB,
            Step.AWAIT_RUNNING,
            Step.RESTORE_PEERING,
            Step.READ_BACK,
        )
        assert not plan.cancel_billing

    def test_rename_only_never_touches_peering(self) -> None:
        plan = plan_update(make_spec(), make_spec(hostname="web02.example.com"))
        assert plan.rename_required
        assert not plan.move_required
        assert Step.TEARDOWN_PEERING not in plan.steps
        assert Step.UNLINK_RESOURCE not in plan.steps
        assert Step.RESTORE_PEERING not in plan.steps
        assert plan.steps.index(Step.AWAIT_JOB) < plan.steps.index(Step.REBUILD_RESOURCE)

    def test_move_and_rename_tear_down_once(self) -> None:
        plan = plan_update(
            make_spec(),
            make_spec(location="NYC", hostname="web02.example.com"),
        )
        assert plan.move_required and plan.rename_required
        assert plan.steps.count(Step.TEARDOWN_PEERING) == 1
        assert plan.steps.count(Step.DELETE_RESOURCE) == 1

    def test_plan_change_rejected(self) -> None:
        with pytest.raises(SpecValidationError, match="plan cannot be changed"):
            plan_update(make_spec(), make_spec(plan="VR2x2x50"))


class TestOtherPlans:
    def test_create_plan(self) -> None:
        plan = plan_create(make_spec())
        assert plan.kind == PlanKind.CREATE
        assert Step.AWAIT_JOB not in plan.steps

    def test_delete_plan_cancels_billing(self) -> None:
        plan = plan_delete()
        assert plan.cancel_billing
        assert plan.steps == (
            Step.TEARDOWN_PEERING,
            Step.DELETE_RESOURCE,
            Step.AWAIT_JOB,
            Step.MARK_ABSENT,
        )
