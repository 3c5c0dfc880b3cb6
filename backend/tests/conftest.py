# tests/conftest.py
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import event

from automation.core.clock import utcnow
from automation.core.config import settings
from automation.db.base import Base
from automation.db.session import create_engine, create_session_factory
from automation.models import Business, Customer, Workflow
from automation.services.delivery import (
    EmailSender,
    SmsEligibility,
    SmsResult,
    SmsSender,
    WebhookCaller,
)
from automation.services.metrics import MetricsRegistry
from automation.services.runtime import AutomationRuntime

ORG_ID = "org-acme"
OTHER_ORG_ID = "org-other"


@pytest.fixture
def test_settings():
    """Settings tuned for tests: no background loop, one worker, no log batching."""
    return settings.model_copy(update={
        "SCHEDULER_ENABLED": False,
        "SCHEDULER_MAX_WORKERS": 1,
        "BUSINESS_TIMEZONE": "UTC",
        "WEBHOOK_MAX_RETRIES": 3,
        "WEBHOOK_RETRY_DELAY_MS": 100,
        "EXECUTION_LOG_QUEUE_SIZE": 100,
        "EXECUTION_LOG_BATCH_SIZE": 10,
    })


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def fetch(session_factory, model, object_id):
    """Load a fresh copy of a row in its own short-lived session."""
    async with session_factory() as session:
        return await session.get(model, object_id)


@pytest.fixture
async def seed(db):
    business = Business(id="biz-1", organization_id=ORG_ID, name="Acme Plumbing", industry="plumbing")
    other_business = Business(id="biz-other", organization_id=OTHER_ORG_ID, name="Other Co", industry="hvac")
    customer = Customer(
        id="cust-ready",
        organization_id=ORG_ID,
        business_id=business.id,
        name="Jane Doe",
        email="jane@example.com",
        phone="+15550001111",
        service_type="repair",
        sms_opt_in=True,
        ready_for_automation=True,
        created_at=utcnow(),
    )
    no_email = Customer(
        id="cust-no-email",
        organization_id=ORG_ID,
        business_id=business.id,
        name="Sam Phone",
        email="   ",
        phone="+15550002222",
        service_type="repair",
        sms_opt_in=True,
        ready_for_automation=True,
        created_at=utcnow(),
    )
    not_ready = Customer(
        id="cust-not-ready",
        organization_id=ORG_ID,
        business_id=business.id,
        name="Pat Pending",
        email="pat@example.com",
        service_type="install",
        ready_for_automation=False,
        created_at=utcnow(),
    )
    other_org_customer = Customer(
        id="cust-other",
        organization_id=OTHER_ORG_ID,
        business_id=other_business.id,
        name="Olga Other",
        email="olga@example.com",
        ready_for_automation=True,
        created_at=utcnow(),
    )
    db.add_all([business, other_business, customer, no_email, not_ready, other_org_customer])
    await db.commit()
    return SimpleNamespace(
        business=business,
        other_business=other_business,
        customer=customer,
        no_email=no_email,
        not_ready=not_ready,
        other_org_customer=other_org_customer,
    )


@pytest.fixture
def make_workflow(db):
    """Insert a workflow straight through the ORM, bypassing API validation."""

    async def _make(**overrides) -> Workflow:
        values = {
            "organization_id": ORG_ID,
            "name": "Review request",
            "trigger_type": "CUSTOMER_CREATED",
            "trigger_config": {},
            "delivery_method": "EMAIL",
            "is_active": True,
            "created_at": utcnow(),
        }
        values.update(overrides)
        workflow = Workflow(**values)
        db.add(workflow)
        await db.commit()
        return workflow

    return _make


@pytest.fixture
def email_sender():
    sender = AsyncMock(spec=EmailSender)
    sender.send_review_request_with_template.return_value = True
    sender.send_follow_up_email.return_value = True
    sender.send_template_by_name.return_value = True
    return sender


@pytest.fixture
def sms_sender():
    sender = AsyncMock(spec=SmsSender)
    sender.get_eligibility.return_value = SmsEligibility(eligible=True)
    sender.send_review_request_sms.return_value = SmsResult(success=True, message_id="sms-1")
    sender.send_follow_up_sms.return_value = SmsResult(success=True, message_id="sms-2")
    return sender


class WebhookRecorder:
    """httpx.MockTransport handler that replays queued responses and records requests."""

    def __init__(self):
        self.requests = []
        self.responses = []
        self.sleeps = []

    def queue(self, *responses):
        self.responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"ok": 200 <= outcome < 300})

    async def sleep(self, delay: float):
        self.sleeps.append(delay)


@pytest.fixture
def webhook_recorder():
    return WebhookRecorder()


@pytest.fixture
async def webhook_caller(webhook_recorder):
    client = httpx.AsyncClient(transport=httpx.MockTransport(webhook_recorder))
    caller = WebhookCaller(client=client, max_retries=3, retry_delay=0.1, sleep=webhook_recorder.sleep)
    yield caller
    await client.aclose()


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
async def runtime(test_settings, session_factory, email_sender, sms_sender, webhook_caller, metrics):
    """
    Engine components wired against the test database.

    The log writer is left stopped so nothing writes to SQLite behind a
    test's back; tests call ``runtime.log_sink.drain()`` to flush entries.
    """
    runtime = AutomationRuntime(
        test_settings,
        session_factory,
        email_sender=email_sender,
        sms_sender=sms_sender,
        webhook_caller=webhook_caller,
        metrics=metrics,
    )
    yield runtime
    await runtime.log_sink.drain()


@pytest.fixture
def headers():
    return {"X-Organization-Id": ORG_ID}


@pytest.fixture
async def client(engine, runtime):
    from automation.main import create_application

    app = create_application(engine=engine, runtime=runtime)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
