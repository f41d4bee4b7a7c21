"""
Pytest Configuration and Fixtures

Provides a temporary SQLite database, the FastAPI app wired against it,
Razorpay payload builders and a signing helper.
"""

import json
import uuid
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert, select

from payment_webhooks.config import Settings
from payment_webhooks.main import create_app
from payment_webhooks.models.payments import utcnow
from payment_webhooks.models.tables import payment_webhook_logs, payments, projects, users
from payment_webhooks.services.database import Database
from payment_webhooks.services.razorpay_service import compute_signature
from payment_webhooks.services.sqs_service import SQSService

TEST_WEBHOOK_SECRET = "rzp_whsec_test_12345"
TEST_ADMIN_API_KEY = "admin_test_key"
TEST_QUEUE_URL = "https://sqs.ap-south-1.amazonaws.com/000000000000/payment-notifications"
DEFAULT_ORDER_ID = "order_test_001"
DEFAULT_PAYMENT_ID = "pay_test_001"


@pytest.fixture
def webhook_secret() -> str:
    return TEST_WEBHOOK_SECRET


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings bound to a per-test SQLite file"""
    return Settings(
        _env_file=None,
        environment="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        razorpay_webhook_secret=TEST_WEBHOOK_SECRET,
        admin_api_key=TEST_ADMIN_API_KEY,
        admin_notification_email="ops@studio.test",
        portal_url="https://portal.studio.test",
        notification_queue_url=None,
    )


@pytest.fixture
async def database(test_settings):
    """Temporary database with the schema created"""
    db = Database(test_settings.database_url)
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
def mock_sqs_service():
    """Mock notification queue client"""
    mock = MagicMock(spec=SQSService)
    mock.queue_url = TEST_QUEUE_URL
    mock.send_message = AsyncMock(return_value={"MessageId": "msg-test-1"})
    mock.get_queue_attributes = AsyncMock(
        return_value={"ApproximateNumberOfMessages": "0"}
    )
    return mock


@pytest.fixture
def app(test_settings, database, mock_sqs_service):
    return create_app(settings=test_settings, database=database, sqs_service=mock_sqs_service)


@pytest.fixture
def services(app):
    return app.state.services


@pytest.fixture
async def async_client(app):
    """Async HTTP client for testing"""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def seed_payment(database):
    """Insert a payment (with project and client by default); returns its id"""

    async def _seed(
        order_id: str = DEFAULT_ORDER_ID,
        status: str = "pending",
        amount: int = 1250000,
        currency: str = "INR",
        payment_type: str = "advance",
        with_project: bool = True,
        client_email: str = "client@example.com",
        client_name: str = "Asha Rao",
        project_number: str = "VP-2024-017",
        **overrides: Any,
    ) -> str:
        now = utcnow()
        payment_id = str(uuid.uuid4())
        project_id = None

        async with database.transaction() as connection:
            if with_project:
                user_id = str(uuid.uuid4())
                project_id = str(uuid.uuid4())
                await connection.execute(
                    insert(users).values(id=user_id, email=client_email, full_name=client_name)
                )
                await connection.execute(
                    insert(projects).values(
                        id=project_id, project_number=project_number, client_user_id=user_id
                    )
                )

            values = {
                "id": payment_id,
                "proposal_id": str(uuid.uuid4()),
                "project_id": project_id,
                "amount": amount,
                "currency": currency,
                "payment_type": payment_type,
                "status": status,
                "razorpay_order_id": order_id,
                "created_at": now,
                "updated_at": now,
            }
            values.update(overrides)
            await connection.execute(insert(payments).values(**values))

        return payment_id

    return _seed


@pytest.fixture
def fetch_payment(database):
    async def _fetch(payment_id: str) -> Optional[Dict[str, Any]]:
        async with database.connect() as connection:
            result = await connection.execute(select(payments).where(payments.c.id == payment_id))
            row = result.first()
        return dict(row._mapping) if row is not None else None

    return _fetch


@pytest.fixture
def fetch_logs(database):
    """All audit entries, optionally for one event id"""

    async def _fetch(event_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = select(payment_webhook_logs)
        if event_id is not None:
            query = query.where(payment_webhook_logs.c.razorpay_event_id == event_id)
        async with database.connect() as connection:
            result = await connection.execute(query)
            return [dict(row._mapping) for row in result]

    return _fetch


@pytest.fixture
def make_event():
    """Build a Razorpay webhook body"""

    def _make(
        event: str = "payment.captured",
        order_id: Optional[str] = DEFAULT_ORDER_ID,
        payment_id: str = DEFAULT_PAYMENT_ID,
        method: str = "upi",
        amount: int = 1250000,
        error_code: Optional[str] = None,
        error_description: Optional[str] = None,
        include_payment: bool = True,
        include_order: bool = False,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        contains = []

        if include_payment:
            contains.append("payment")
            payload["payment"] = {
                "entity": {
                    "id": payment_id,
                    "entity": "payment",
                    "amount": amount,
                    "currency": "INR",
                    "status": "failed" if event == "payment.failed" else "captured",
                    "order_id": order_id,
                    "method": method,
                    "captured": event != "payment.failed",
                    "error_code": error_code,
                    "error_description": error_description,
                }
            }
        if include_order:
            contains.append("order")
            payload["order"] = {
                "entity": {
                    "id": order_id,
                    "entity": "order",
                    "amount": amount,
                    "amount_paid": amount,
                    "currency": "INR",
                    "status": "paid",
                }
            }

        return {
            "entity": "event",
            "account_id": "acc_test_001",
            "event": event,
            "contains": contains,
            "payload": payload,
            "created_at": 1718000000,
        }

    return _make


def encode_body(body: Dict[str, Any]) -> bytes:
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


@pytest.fixture
def sign():
    def _sign(raw_body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
        return compute_signature(raw_body, secret)

    return _sign


@pytest.fixture
def post_webhook(async_client):
    """POST a signed delivery to the Razorpay endpoint"""

    async def _post(
        body: Optional[Dict[str, Any]] = None,
        event_id: Optional[str] = "evt_test_001",
        signature: Optional[str] = None,
        raw_body: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        raw = raw_body if raw_body is not None else encode_body(body or {})
        request_headers = {
            "Content-Type": "application/json",
            "x-forwarded-for": "203.0.113.7, 10.0.0.1",
        }
        if signature is None:
            signature = compute_signature(raw, TEST_WEBHOOK_SECRET)
        if signature:
            request_headers["x-razorpay-signature"] = signature
        if event_id:
            request_headers["x-razorpay-event-id"] = event_id
        request_headers.update(headers or {})

        return await async_client.post("/webhooks/razorpay", content=raw, headers=request_headers)

    return _post
