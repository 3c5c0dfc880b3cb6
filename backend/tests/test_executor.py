import json

import pytest

from automation.core.clock import utcnow
from automation.models import Business, Customer, Workflow, WorkflowExecution
from automation.services import metrics as metric_names
from automation.services.delivery import SmsEligibility, SmsResult
from automation.services.executor import ExecutionEngine

from tests.conftest import ORG_ID


def build_execution(actions=None, delivery_method=None, email_template_type=None, **customer_overrides):
    business = Business(id="biz-1", organization_id=ORG_ID, name="Acme Plumbing", industry="plumbing")
    customer_values = {
        "id": "cust-1",
        "organization_id": ORG_ID,
        "business_id": business.id,
        "name": "Jane Doe",
        "email": "jane@example.com",
        "phone": "+15550001111",
        "sms_opt_in": True,
        "sms_opt_out": False,
    }
    customer_values.update(customer_overrides)
    customer = Customer(**customer_values)
    customer.business = business
    workflow = Workflow(
        id="wf-1",
        organization_id=ORG_ID,
        name="Review flow",
        trigger_type="CUSTOMER_CREATED",
        trigger_config={},
        actions=actions,
        delivery_method=delivery_method,
        email_template_type=email_template_type,
    )
    return WorkflowExecution(
        id="exec-1",
        organization_id=ORG_ID,
        workflow_id=workflow.id,
        customer_id=customer.id,
        business_id=business.id,
        workflow=workflow,
        customer=customer,
        business=business,
        trigger_event="CUSTOMER_CREATED",
        trigger_data={"customer_name": "Jane Doe"},
        current_step=1,
        created_at=utcnow(),
    )


@pytest.fixture
def execution_engine(email_sender, sms_sender, webhook_caller, metrics):
    return ExecutionEngine(email_sender, sms_sender, webhook_caller, metrics=metrics)


async def test_delivery_method_email(execution_engine, email_sender):
    outcome = await execution_engine.run(build_execution(delivery_method="EMAIL"))

    assert outcome.success
    assert outcome.mode == "delivery_method"
    email_sender.send_review_request_with_template.assert_awaited_once()


async def test_delivery_method_email_with_template_type(execution_engine, email_sender):
    execution = build_execution(delivery_method="EMAIL", email_template_type="follow_up_7_day")

    assert await execution_engine.execute(execution)
    email_sender.send_follow_up_email.assert_awaited_once_with(execution.customer, "FOLLOW_UP_7_DAY")


async def test_delivery_method_takes_precedence_over_actions(execution_engine, email_sender, webhook_recorder):
    execution = build_execution(
        delivery_method="EMAIL",
        actions={"hook": {"type": "webhook", "webhook_url": "https://hooks.example.com"}},
    )

    assert await execution_engine.execute(execution)
    assert webhook_recorder.requests == []


async def test_both_falls_back_to_sms_when_email_fails(execution_engine, email_sender, sms_sender):
    email_sender.send_review_request_with_template.return_value = False

    assert await execution_engine.execute(build_execution(delivery_method="BOTH"))
    sms_sender.send_review_request_sms.assert_awaited_once()


async def test_both_falls_back_to_sms_when_email_raises(execution_engine, email_sender, sms_sender):
    email_sender.send_review_request_with_template.side_effect = RuntimeError("smtp down")
    sms_sender.send_review_request_sms.return_value = SmsResult(success=False, error="carrier rejected")

    assert not await execution_engine.execute(build_execution(delivery_method="BOTH"))
    sms_sender.send_review_request_sms.assert_awaited_once()


async def test_both_skips_sms_when_email_succeeds(execution_engine, sms_sender):
    assert await execution_engine.execute(build_execution(delivery_method="BOTH"))
    sms_sender.send_review_request_sms.assert_not_awaited()


async def test_sms_delivery_requires_consent(execution_engine, sms_sender):
    assert not await execution_engine.execute(build_execution(delivery_method="SMS", sms_opt_in=False))
    sms_sender.send_review_request_sms.assert_not_awaited()


async def test_partial_failure_still_runs_remaining_actions(execution_engine, email_sender, sms_sender, webhook_recorder, metrics):
    sms_sender.get_eligibility.side_effect = RuntimeError("sms provider exploded")
    execution = build_execution(actions={
        "first": {"type": "email"},
        "second": {"type": "sms"},
        "third": {"type": "webhook", "webhook_url": "https://hooks.example.com/done"},
    })

    outcome = await execution_engine.run(execution)

    assert outcome.success
    assert [a.success for a in outcome.actions] == [True, False, True]
    assert "sms provider exploded" in outcome.actions[1].detail
    email_sender.send_review_request_with_template.assert_awaited_once()
    assert len(webhook_recorder.requests) == 1
    assert execution.current_step == 3
    assert metrics.value(metric_names.ACTIONS_EXECUTED, success=False) == 1
    assert metrics.value(metric_names.ACTIONS_EXECUTED, success=True) == 2


async def test_execution_fails_when_every_action_fails(execution_engine, email_sender, webhook_recorder, metrics):
    email_sender.send_review_request_with_template.return_value = False
    webhook_recorder.queue(404)
    execution = build_execution(actions={
        "email": {},
        "hook": {"type": "webhook", "webhook_url": "https://hooks.example.com/x"},
        "fax": {"number": "555"},
    })

    outcome = await execution_engine.run(execution)

    assert not outcome.success
    assert [a.kind for a in outcome.actions] == ["email", "webhook", "unknown"]
    assert metrics.value(metric_names.WORKFLOW_EXECUTIONS, status="failure") == 1


async def test_zero_actions_is_a_failure(execution_engine):
    outcome = await execution_engine.run(build_execution(actions={}))

    assert not outcome.success
    assert outcome.error == "No actions defined"


async def test_disabled_actions_count_as_success(execution_engine, email_sender):
    outcome = await execution_engine.run(build_execution(actions={"later": {"type": "email", "enabled": False}}))

    assert outcome.success
    assert outcome.actions[0].detail == "disabled"
    email_sender.send_review_request_with_template.assert_not_awaited()


async def test_delay_action_always_succeeds(execution_engine):
    assert await execution_engine.execute(build_execution(actions={"wait": {"type": "delay", "delay_days": 2}}))


async def test_invalid_action_is_a_failed_action(execution_engine):
    outcome = await execution_engine.run(build_execution(actions={"hook": {"type": "webhook"}, "wait": {"type": "delay"}}))

    assert outcome.success
    assert [a.success for a in outcome.actions] == [False, True]


async def test_email_action_template_resolution(execution_engine, email_sender):
    execution = build_execution(actions={
        "by_type": {"type": "email", "template_type": "thank_you"},
        "by_name": {"type": "email", "template_name": "Spring promo"},
    })

    assert await execution_engine.execute(execution)
    email_sender.send_follow_up_email.assert_awaited_once_with(execution.customer, "THANK_YOU")
    email_sender.send_template_by_name.assert_awaited_once_with(execution.customer, "Spring promo")


async def test_sms_action_message_types(execution_engine, sms_sender):
    execution = build_execution(actions={
        "follow": {"type": "sms", "message_type": "follow_up", "follow_up_type": "reminder"},
        "thanks": {"type": "sms", "message_type": "thank_you"},
        "odd": {"type": "sms", "message_type": "birthday"},
    })

    outcome = await execution_engine.run(execution)

    assert [a.success for a in outcome.actions] == [True, True, False]
    sms_sender.send_follow_up_sms.assert_awaited_once_with(execution.customer, "reminder")
    sms_sender.send_review_request_sms.assert_not_awaited()


async def test_sms_action_checks_eligibility(execution_engine, sms_sender):
    sms_sender.get_eligibility.return_value = SmsEligibility(eligible=False, reason="Rate limited")

    assert not await execution_engine.execute(build_execution(actions={"sms": {}}))
    sms_sender.send_review_request_sms.assert_not_awaited()


async def test_review_request_action_uses_delivery_fan_out(execution_engine, email_sender, sms_sender):
    email_sender.send_review_request_with_template.return_value = False
    execution = build_execution(actions={"review_request": {"delivery_method": "BOTH"}})

    assert await execution_engine.execute(execution)
    sms_sender.send_review_request_sms.assert_awaited_once()


async def test_webhook_payload(execution_engine, webhook_recorder):
    execution = build_execution(actions={
        "hook": {
            "type": "webhook",
            "webhook_url": "https://hooks.example.com/crm",
            "method": "put",
            "headers": {"Authorization": "Bearer abc"},
            "payload": {"source": "automation"},
        },
    })

    assert await execution_engine.execute(execution)

    request = webhook_recorder.requests[0]
    body = json.loads(request.content)
    assert request.method == "PUT"
    assert request.headers["Authorization"] == "Bearer abc"
    assert body["event"] == "CUSTOMER_CREATED"
    assert body["execution_id"] == "exec-1"
    assert body["workflow_id"] == "wf-1"
    assert body["customer"] == {"id": "cust-1", "name": "Jane Doe", "email": "jane@example.com"}
    assert body["business"] == {"id": "biz-1", "name": "Acme Plumbing"}
    assert body["trigger_data"] == {"customer_name": "Jane Doe"}
    assert body["source"] == "automation"
    assert body["timestamp"] == execution.created_at.isoformat()


async def test_webhook_failure_is_counted_not_raised(execution_engine, webhook_recorder, metrics):
    webhook_recorder.queue(500, 500, 500, 500)

    assert not await execution_engine.execute(
        build_execution(actions={"hook": {"type": "webhook", "webhook_url": "https://hooks.example.com"}})
    )
    assert metrics.value(metric_names.WEBHOOK_CALLS, success=False) == 1
    assert len(webhook_recorder.requests) == 4


async def test_unexpected_error_becomes_a_failed_outcome(execution_engine, metrics):
    execution = build_execution(delivery_method="EMAIL")
    execution.customer = None

    outcome = await execution_engine.run(execution)

    assert not outcome.success
    assert outcome.mode == "error"
    assert metrics.value(metric_names.WORKFLOW_EXECUTIONS, status="error") == 1
