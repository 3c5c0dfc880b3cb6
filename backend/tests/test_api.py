from automation.models import ReviewRequest

from tests.conftest import OTHER_ORG_ID

WORKFLOW = {
    "name": "Review after service",
    "trigger_type": "SERVICE_COMPLETED",
    "trigger_config": {"delay_hours": 2, "business_hours_only": True},
    "actions": {"send_review_request": {"delivery_method": "EMAIL"}},
    "conditions": {"has_email": True},
}


async def create_workflow(client, headers, **overrides):
    body = dict(WORKFLOW, **overrides)
    response = await client.post("/api/v1/workflows", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def test_root_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_detailed_health(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "ok"
    assert body["scheduler_running"] is False
    assert body["log_writer_running"] is False


async def test_organization_header_is_required(client):
    missing = await client.get("/api/v1/workflows")
    blank = await client.get("/api/v1/workflows", headers={"X-Organization-Id": "  "})

    assert missing.status_code == 422
    assert missing.json()["message"] == "Validation error"
    assert blank.status_code == 400


async def test_workflow_crud(client, headers, seed):
    created = await create_workflow(client, headers, business_id=seed.business.id)
    workflow_id = created["id"]
    assert created["execution_count"] == 0
    assert created["delivery_method"] is None

    fetched = await client.get(f"/api/v1/workflows/{workflow_id}", headers=headers)
    assert fetched.json()["name"] == WORKFLOW["name"]

    updated = await client.put(
        f"/api/v1/workflows/{workflow_id}", json={"name": "Renamed", "delivery_method": "BOTH"}, headers=headers
    )
    assert updated.status_code == 200
    assert updated.json()["name"] == "Renamed"
    assert updated.json()["delivery_method"] == "BOTH"

    paused = await client.patch(f"/api/v1/workflows/{workflow_id}/status", json={"is_active": False}, headers=headers)
    assert paused.json()["is_active"] is False

    active = await client.get("/api/v1/workflows", headers=headers)
    everything = await client.get("/api/v1/workflows", params={"active_only": False}, headers=headers)
    assert active.json() == []
    assert [w["id"] for w in everything.json()] == [workflow_id]


async def test_invalid_workflow_is_rejected_with_every_problem(client, headers, seed):
    body = dict(WORKFLOW, trigger_config={"delay_days": -1}, actions={"hook": {"type": "webhook"}})

    response = await client.post("/api/v1/workflows", json=body, headers=headers)

    assert response.status_code == 422
    problems = response.json()["detail"]
    assert any(p.startswith("trigger_config.delay_days") for p in problems)
    assert any(p.startswith("actions.hook") for p in problems)


async def test_unknown_trigger_type_is_a_validation_error(client, headers, seed):
    response = await client.post("/api/v1/workflows", json=dict(WORKFLOW, trigger_type="ORDER_PLACED"), headers=headers)
    assert response.status_code == 422


async def test_workflow_of_another_organization_is_not_found(client, headers, seed):
    created = await create_workflow(client, headers)

    response = await client.get(f"/api/v1/workflows/{created['id']}", headers={"X-Organization-Id": OTHER_ORG_ID})

    assert response.status_code == 404
    assert response.json()["message"] == "Not found"


async def test_trigger_inspect_and_cancel_an_execution(client, headers, seed):
    workflow = await create_workflow(client, headers)

    triggered = await client.post(
        f"/api/v1/workflows/{workflow['id']}/trigger",
        json={"customer_id": seed.customer.id, "trigger_data": {"source": "api"}},
        headers=headers,
    )
    assert triggered.status_code == 202
    execution = triggered.json()
    assert execution["status"] == "PENDING"
    assert execution["scheduled_for"] is not None
    assert execution["trigger_data"] == {"source": "api"}

    listed = await client.get(f"/api/v1/workflows/{workflow['id']}/executions", headers=headers)
    assert listed.json()["total"] == 1

    cancelled = await client.post(
        f"/api/v1/executions/{execution['id']}/cancel", json={"reason": "Customer asked"}, headers=headers
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["error_message"] == "Customer asked"

    again = await client.post(f"/api/v1/executions/{execution['id']}/cancel", headers=headers)
    assert again.status_code == 409

    by_status = await client.get("/api/v1/executions", params={"status": "cancelled"}, headers=headers)
    assert [e["id"] for e in by_status.json()["items"]] == [execution["id"]]


async def test_trigger_for_unknown_customer(client, headers, seed):
    workflow = await create_workflow(client, headers)

    response = await client.post(
        f"/api/v1/workflows/{workflow['id']}/trigger", json={"customer_id": "missing"}, headers=headers
    )

    assert response.status_code == 404


async def test_test_run_and_execution_logs(client, headers, seed, runtime, email_sender):
    workflow = await create_workflow(client, headers, trigger_type="CUSTOMER_CREATED")

    response = await client.post(
        f"/api/v1/workflows/{workflow['id']}/test", json={"customer_id": seed.customer.id}, headers=headers
    )
    assert response.status_code == 202
    execution_id = response.json()["id"]

    await runtime.scheduler.run_sweep()
    await runtime.log_sink.drain()

    execution = await client.get(f"/api/v1/executions/{execution_id}", headers=headers)
    assert execution.json()["status"] == "COMPLETED"

    logs = await client.get(f"/api/v1/executions/{execution_id}/logs", headers=headers)
    assert logs.status_code == 200
    assert logs.json()["total"] >= 1
    assert all(item["execution_id"] == execution_id for item in logs.json()["items"])

    metrics = await client.get(f"/api/v1/workflows/{workflow['id']}/metrics", params={"days": 7}, headers=headers)
    assert metrics.json()["completed"] == 1
    assert metrics.json()["success_rate"] == 1.0


async def test_bulk_trigger_and_preview(client, headers, seed):
    workflow = await create_workflow(client, headers)

    bulk = await client.post(
        f"/api/v1/workflows/{workflow['id']}/bulk-trigger",
        json={"customer_ids": [seed.customer.id, "missing"]},
        headers=headers,
    )
    assert bulk.status_code == 202
    assert len(bulk.json()["scheduled"]) == 1
    assert bulk.json()["failed"][0]["customer_id"] == "missing"

    preview = await client.get(
        f"/api/v1/workflows/{workflow['id']}/preview", params={"customer_id": seed.no_email.id}, headers=headers
    )
    assert preview.status_code == 200
    assert preview.json()["eligible"] is False
    assert preview.json()["would_send"] is False


async def test_lifecycle_trigger_endpoints(client, headers, seed):
    await create_workflow(client, headers, trigger_type="CUSTOMER_CREATED")
    await create_workflow(client, headers, trigger_type="WEBHOOK", trigger_config={"webhook_keys": ["crm"]})

    created = await client.post(f"/api/v1/triggers/customers/{seed.customer.id}/created", headers=headers)
    repeated = await client.post(f"/api/v1/triggers/customers/{seed.customer.id}/created", headers=headers)
    completed = await client.post(
        f"/api/v1/triggers/customers/{seed.not_ready.id}/service-completed",
        json={"service_type": "install"},
        headers=headers,
    )
    webhook = await client.post(
        "/api/v1/triggers/webhooks/crm", json={"customer_id": seed.customer.id, "payload": {"deal": "won"}},
        headers=headers,
    )

    assert created.status_code == 200
    assert len(created.json()["scheduled"]) == 1
    assert repeated.json()["scheduled"] == []
    assert repeated.json()["reason"] == "Automation already triggered for customer"
    assert completed.json()["success"] is True
    assert len(webhook.json()["scheduled"]) == 1

    missing = await client.post("/api/v1/triggers/customers/missing/created", headers=headers)
    assert missing.status_code == 404


async def test_review_completed_endpoint(client, headers, seed, runtime):
    await create_workflow(client, headers, trigger_type="REVIEW_COMPLETED", conditions=None)
    async with runtime.session_factory() as session:
        session.add(ReviewRequest(id="rr-api", customer_id=seed.customer.id, business_id=seed.business.id))
        await session.commit()

    response = await client.post("/api/v1/triggers/review-requests/rr-api/completed", headers=headers)

    assert response.status_code == 200
    assert len(response.json()["scheduled"]) == 1


async def test_templates_and_defaults(client, headers, seed):
    template = await client.post("/api/v1/templates", json={
        "name": "Thank you",
        "description": "Thanks customers after a review",
        "category": "follow_up",
        "trigger_type": "REVIEW_COMPLETED",
        "template_config": {"delay_minutes": 30},
        "default_actions": {"thanks": {"type": "email", "template_type": "THANK_YOU"}},
    })
    assert template.status_code == 201

    listed = await client.get("/api/v1/templates", params={"category": "follow_up"})
    assert [t["name"] for t in listed.json()] == ["Thank you"]

    from_template = await client.post(f"/api/v1/templates/{template.json()['id']}/workflows", headers=headers)
    assert from_template.status_code == 201
    assert from_template.json()["name"] == "Thank you (Copy)"

    # the organization already has a workflow, so no defaults are added
    defaults = await client.post("/api/v1/templates/defaults", headers=headers)
    assert defaults.json() == {"created": 0, "workflow_ids": []}

    other = await client.post("/api/v1/templates/defaults", headers={"X-Organization-Id": OTHER_ORG_ID})
    assert other.status_code == 201
    assert other.json()["created"] == 3


async def test_monitoring_endpoints(client, headers, seed):
    workflow = await create_workflow(client, headers)
    await client.post(
        f"/api/v1/workflows/{workflow['id']}/trigger", json={"customer_id": seed.customer.id}, headers=headers
    )

    scheduler = await client.get("/api/v1/monitoring/scheduler", headers=headers)
    assert scheduler.status_code == 200
    assert scheduler.json()["running"] is False
    assert scheduler.json()["executions_by_status"]["PENDING"] == 1

    metrics = await client.get("/api/v1/monitoring/metrics")
    assert "automation.executions.scheduled" in metrics.json()
