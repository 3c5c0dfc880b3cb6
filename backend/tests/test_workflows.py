import pytest

from automation.core.exceptions import ConfigurationError, NotFoundError
from automation.models import ExecutionStatus, Workflow, WorkflowExecution
from automation.schemas.template import TemplateCreate, TemplateWorkflowCreate
from automation.schemas.workflow import WorkflowCreate, WorkflowUpdate
from automation.services import workflows as workflow_service

from tests.conftest import ORG_ID, OTHER_ORG_ID, fetch


def workflow_data(**overrides) -> WorkflowCreate:
    values = {
        "name": "Review after service",
        "trigger_type": "SERVICE_COMPLETED",
        "trigger_config": {"delay_hours": 2},
        "actions": {"send_review_request": {"delivery_method": "EMAIL"}},
        "conditions": {"has_email": True},
    }
    values.update(overrides)
    return WorkflowCreate(**values)


async def test_create_workflow(db, seed):
    workflow = await workflow_service.create_workflow(db, ORG_ID, workflow_data(business_id=seed.business.id))
    await db.commit()

    assert workflow.id
    assert workflow.trigger_type == "SERVICE_COMPLETED"
    assert workflow.execution_count == 0
    assert workflow.is_active


async def test_create_workflow_rejects_invalid_configuration(db, seed):
    data = workflow_data(
        trigger_config={"delay_days": -1},
        actions={"hook": {"type": "webhook"}},
        conditions={"execution_hours": {"start": 9}},
    )

    with pytest.raises(ConfigurationError) as exc_info:
        await workflow_service.create_workflow(db, ORG_ID, data)
    assert len(exc_info.value.problems) == 3


async def test_create_workflow_rejects_a_business_of_another_organization(db, seed):
    with pytest.raises(NotFoundError):
        await workflow_service.create_workflow(db, ORG_ID, workflow_data(business_id=seed.other_business.id))


async def test_list_and_get_are_scoped_to_the_organization(db, seed, make_workflow):
    mine = await make_workflow()
    await make_workflow(name="Paused", is_active=False)
    await make_workflow(organization_id=OTHER_ORG_ID)

    assert [w.id for w in await workflow_service.list_workflows(db, ORG_ID)] == [mine.id]
    assert len(await workflow_service.list_workflows(db, ORG_ID, active_only=False)) == 2
    with pytest.raises(NotFoundError):
        await workflow_service.get_workflow(db, OTHER_ORG_ID, mine.id)


async def test_update_validates_the_merged_configuration(db, seed, make_workflow):
    workflow = await make_workflow(delivery_method=None, actions={"email": {}})

    updated = await workflow_service.update_workflow(
        db, ORG_ID, workflow.id, WorkflowUpdate(name="Renamed", trigger_config={"delay_days": 3})
    )
    await db.commit()
    assert updated.name == "Renamed"
    assert updated.trigger_config == {"delay_days": 3}
    assert updated.actions == {"email": {}}

    with pytest.raises(ConfigurationError):
        await workflow_service.update_workflow(db, ORG_ID, workflow.id, WorkflowUpdate(actions={}))


async def test_set_workflow_active(db, seed, make_workflow, session_factory):
    workflow = await make_workflow()

    await workflow_service.set_workflow_active(db, ORG_ID, workflow.id, False)
    await db.commit()

    assert not (await fetch(session_factory, Workflow, workflow.id)).is_active


async def test_templates_and_workflows_from_templates(db, seed):
    template = await workflow_service.create_template(db, TemplateCreate(
        name="Thank you",
        description="Thanks customers after a review",
        category="follow_up",
        trigger_type="REVIEW_COMPLETED",
        template_config={"delay_minutes": 30},
        default_actions={"thanks": {"type": "email", "template_type": "THANK_YOU"}},
    ))
    await db.commit()

    assert [t.id for t in await workflow_service.list_templates(db, category="follow_up")] == [template.id]
    assert await workflow_service.list_templates(db, category="onboarding") == []

    workflow = await workflow_service.create_workflow_from_template(
        db,
        ORG_ID,
        template.id,
        TemplateWorkflowCreate(trigger_config={"business_hours_only": True}),
    )
    await db.commit()

    assert workflow.name == "Thank you (Copy)"
    assert workflow.trigger_type == "REVIEW_COMPLETED"
    assert workflow.trigger_config == {"delay_minutes": 30, "business_hours_only": True}
    assert workflow.actions == template.default_actions


async def test_create_template_rejects_invalid_actions(db):
    with pytest.raises(ConfigurationError):
        await workflow_service.create_template(db, TemplateCreate(
            name="Broken",
            description="Webhook without a URL",
            category="integrations",
            trigger_type="WEBHOOK",
            default_actions={"hook": {"type": "webhook"}},
        ))


async def test_workflow_from_missing_template(db, seed):
    with pytest.raises(NotFoundError):
        await workflow_service.create_workflow_from_template(db, ORG_ID, "missing")


async def test_seed_default_workflows_only_once(db, seed):
    created = await workflow_service.seed_default_workflows(db, ORG_ID, created_by="admin")
    await db.commit()

    assert [w.name for w in created] == [d["name"] for d in workflow_service.DEFAULT_WORKFLOWS]
    assert all(w.created_by == "admin" for w in created)
    assert await workflow_service.seed_default_workflows(db, ORG_ID) == []


async def test_default_follow_up_sends_one_email_per_run(db, seed, runtime, email_sender):
    created = await workflow_service.seed_default_workflows(db, ORG_ID)
    await db.commit()
    follow_up = next(w for w in created if w.name == "Follow-up Sequence")
    assert follow_up.trigger_config["delay_days"] == 7

    execution = await runtime.runner.test_workflow(db, ORG_ID, follow_up.id, seed.customer.id)
    assert await runtime.scheduler.run_sweep() == 1

    stored = await fetch(runtime.session_factory, WorkflowExecution, execution.id)
    assert stored.status == ExecutionStatus.COMPLETED.value
    email_sender.send_follow_up_email.assert_awaited_once()
    email_sender.send_review_request_with_template.assert_not_awaited()


async def test_manual_trigger_ignores_conditions_and_guard(db, seed, make_workflow, runtime):
    workflow = await make_workflow(conditions={"has_email": True}, trigger_config={"delay_hours": 1})

    execution = await runtime.runner.trigger_workflow(
        db, ORG_ID, workflow.id, seed.no_email.id, trigger_data={"note": "by hand"}
    )

    assert execution.trigger_event == "MANUAL_TRIGGER"
    assert execution.trigger_data == {"note": "by hand"}
    assert execution.scheduled_for is not None


async def test_manual_trigger_for_unknown_customer(db, seed, make_workflow, runtime):
    workflow = await make_workflow()

    with pytest.raises(NotFoundError):
        await runtime.runner.trigger_workflow(db, ORG_ID, workflow.id, seed.other_org_customer.id)


async def test_bulk_trigger_reports_failed_customers(db, seed, make_workflow, runtime):
    workflow = await make_workflow()

    response = await runtime.runner.bulk_trigger_workflow(
        db, ORG_ID, workflow.id, [seed.customer.id, "missing", seed.not_ready.id]
    )

    assert response.requested == 3
    assert len(response.scheduled) == 2
    assert [f.customer_id for f in response.failed] == ["missing"]
    assert (await fetch(runtime.session_factory, Workflow, workflow.id)).execution_count == 2


async def test_test_workflow_runs_immediately(db, seed, make_workflow, runtime, email_sender):
    workflow = await make_workflow(trigger_config={"delay_days": 7}, conditions={"has_email": True})

    execution = await runtime.runner.test_workflow(db, ORG_ID, workflow.id, seed.customer.id)

    assert execution.trigger_event == "TEST_EXECUTION"
    assert execution.scheduled_for is None
    assert execution.trigger_data["test_execution"] is True
    assert await runtime.scheduler.run_sweep() == 1
    stored = await fetch(runtime.session_factory, WorkflowExecution, execution.id)
    assert stored.status == ExecutionStatus.COMPLETED.value


async def test_preview_describes_the_run_without_side_effects(db, seed, make_workflow, runtime):
    workflow = await make_workflow(conditions={"has_email": True}, trigger_config={"delay_days": 1})

    ready = await runtime.runner.preview_workflow(db, ORG_ID, workflow.id, seed.customer.id)
    no_email = await runtime.runner.preview_workflow(db, ORG_ID, workflow.id, seed.no_email.id)
    not_ready = await runtime.runner.preview_workflow(db, ORG_ID, workflow.id, seed.not_ready.id)

    assert ready.would_send and ready.eligible
    assert ready.plan == {"mode": "delivery_method", "delivery_method": "EMAIL"}
    assert ready.scheduled_for is not None
    assert not no_email.would_send and not no_email.eligible
    assert not_ready.eligible and not not_ready.would_send
    assert (await fetch(runtime.session_factory, Workflow, workflow.id)).execution_count == 0


async def test_workflow_metrics(db, seed, make_workflow, runtime, email_sender):
    workflow = await make_workflow()
    email_sender.send_review_request_with_template.side_effect = [True, False]
    for customer in (seed.customer, seed.not_ready):
        await runtime.runner.trigger_workflow(db, ORG_ID, workflow.id, customer.id)
    await runtime.scheduler.run_sweep()

    report = await workflow_service.workflow_metrics(db, ORG_ID, workflow.id, days=7)

    assert report.total_executions == 2
    assert report.completed == 1
    assert report.failed == 1
    assert report.pending == 0
    assert report.success_rate == pytest.approx(0.5)
    assert report.average_duration_seconds is not None
    assert report.last_execution_at is not None
    assert report.execution_count == 2
