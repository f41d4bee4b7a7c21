"""
Test Razorpay Webhook Endpoint

Tests signature verification, idempotency, payment state transitions and the
HTTP contract with the provider.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Text

from payment_webhooks.config import Settings
from payment_webhooks.main import create_app
from payment_webhooks.models.tables import payment_webhook_logs
from payment_webhooks.utils.exceptions import QueueException


@pytest.mark.asyncio
async def test_captured_payment_is_completed(
    post_webhook, make_event, seed_payment, fetch_payment, fetch_logs, mock_sqs_service
):
    """Valid payment.captured completes the pending payment"""
    payment_id = await seed_payment()

    response = await post_webhook(make_event("payment.captured"), event_id="evt_cap_1")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "event": "payment.captured", "processed": True}

    payment = await fetch_payment(payment_id)
    assert payment["status"] == "completed"
    assert payment["razorpay_payment_id"] == "pay_test_001"
    assert payment["payment_method"] == "UPI"
    assert payment["completed_at"] is not None

    logs = await fetch_logs("evt_cap_1")
    assert len(logs) == 1
    assert logs[0]["status"] == "PROCESSED"
    assert logs[0]["signature_verified"] is True
    assert logs[0]["payment_id"] == payment_id
    assert logs[0]["processed_at"] is not None
    assert logs[0]["ip_address"] == "203.0.113.7"
    assert logs[0]["razorpay_order_id"] == "order_test_001"

    mock_sqs_service.send_message.assert_called_once()
    message = mock_sqs_service.send_message.call_args.kwargs["message_body"]
    assert message["kind"] == "payment_completed"
    assert message["payment_id"] == payment_id


@pytest.mark.asyncio
async def test_order_paid_completes_payment(
    post_webhook, make_event, seed_payment, fetch_payment
):
    payment_id = await seed_payment()

    response = await post_webhook(
        make_event("order.paid", include_order=True), event_id="evt_order_paid_1"
    )

    assert response.status_code == 200
    assert response.json()["processed"] is True
    assert (await fetch_payment(payment_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_invalid_signature_is_rejected(
    post_webhook, make_event, seed_payment, fetch_payment, fetch_logs, mock_sqs_service
):
    """Wrong signature: 401, no state change, FAILED audit entry"""
    payment_id = await seed_payment()

    response = await post_webhook(
        make_event("payment.captured"), event_id="evt_forged_1", signature="0" * 64
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid signature"}
    assert (await fetch_payment(payment_id))["status"] == "pending"

    logs = await fetch_logs("evt_forged_1")
    assert len(logs) == 1
    assert logs[0]["status"] == "FAILED"
    assert logs[0]["signature_verified"] is False
    assert logs[0]["error"] == "Signature verification failed"
    assert logs[0]["event"] == "payment.captured"
    mock_sqs_service.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_missing_signature_header_is_rejected(post_webhook, make_event, seed_payment):
    await seed_payment()

    response = await post_webhook(make_event("payment.captured"), signature="")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_signature_over_reserialized_body_is_rejected(
    post_webhook, make_event, seed_payment, sign
):
    """The signature covers the exact bytes received"""
    await seed_payment()
    body = make_event("payment.captured")
    compact = json.dumps(body, separators=(",", ":")).encode("utf-8")
    pretty = json.dumps(body, indent=2).encode("utf-8")

    response = await post_webhook(raw_body=pretty, signature=sign(compact))

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_replayed_event_is_acknowledged_once(
    post_webhook, make_event, seed_payment, fetch_payment, fetch_logs, mock_sqs_service
):
    """Second delivery of a processed event id changes nothing"""
    payment_id = await seed_payment()
    body = make_event("payment.captured")

    first = await post_webhook(body, event_id="evt_replay_1")
    completed_at = (await fetch_payment(payment_id))["completed_at"]
    second = await post_webhook(body, event_id="evt_replay_1")

    assert first.json()["status"] == "ok"
    assert second.status_code == 200
    assert second.json() == {
        "status": "already_processed",
        "event": "payment.captured",
        "processed": False,
    }
    assert (await fetch_payment(payment_id))["completed_at"] == completed_at

    logs = await fetch_logs("evt_replay_1")
    assert [log["status"] for log in logs].count("PROCESSED") == 1
    received = [log for log in logs if log["status"] == "RECEIVED"]
    assert len(received) == 1
    assert received[0]["error"] == "Duplicate delivery; event already processed"
    mock_sqs_service.send_message.assert_called_once()


@pytest.mark.asyncio
async def test_forged_delivery_does_not_block_genuine_event(
    post_webhook, make_event, seed_payment, fetch_payment
):
    """A rejected request carrying a real event id must not mark it processed"""
    payment_id = await seed_payment()
    body = make_event("payment.captured")

    forged = await post_webhook(body, event_id="evt_shared_1", signature="f" * 64)
    genuine = await post_webhook(body, event_id="evt_shared_1")

    assert forged.status_code == 401
    assert genuine.json()["status"] == "ok"
    assert (await fetch_payment(payment_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_delivery_without_event_id_is_processed(
    post_webhook, make_event, seed_payment, fetch_payment
):
    payment_id = await seed_payment()

    response = await post_webhook(make_event("payment.captured"), event_id=None)

    assert response.json()["status"] == "ok"
    assert (await fetch_payment(payment_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_invalid_json_returns_400(post_webhook, fetch_logs):
    response = await post_webhook(raw_body=b"{not json", event_id="evt_bad_json")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}

    logs = await fetch_logs("evt_bad_json")
    assert len(logs) == 1
    assert logs[0]["status"] == "FAILED"
    assert logs[0]["event"] == "unknown"


@pytest.mark.asyncio
async def test_payload_without_event_name_returns_400(post_webhook):
    response = await post_webhook({"entity": "event", "payload": {}}, event_id="evt_no_name")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}


DEEPLY_NESTED_BODY = b"[" * 200000 + b"]" * 200000


@pytest.mark.asyncio
async def test_forged_deeply_nested_body_is_rejected_and_logged(post_webhook, fetch_logs):
    response = await post_webhook(
        raw_body=DEEPLY_NESTED_BODY, event_id="evt_nested_forged", signature="0" * 64
    )

    assert response.status_code == 401
    logs = await fetch_logs("evt_nested_forged")
    assert len(logs) == 1
    assert logs[0]["status"] == "FAILED"
    assert logs[0]["signature_verified"] is False
    assert logs[0]["event"] == "unknown"


@pytest.mark.asyncio
async def test_signed_deeply_nested_body_returns_400(post_webhook, fetch_logs):
    response = await post_webhook(raw_body=DEEPLY_NESTED_BODY, event_id="evt_nested_signed")

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}
    logs = await fetch_logs("evt_nested_signed")
    assert len(logs) == 1
    assert logs[0]["status"] == "FAILED"
    assert logs[0]["signature_verified"] is True


@pytest.mark.asyncio
async def test_long_event_id_and_forwarded_for_are_stored_intact(
    post_webhook, make_event, fetch_logs
):
    event_id = "evt_" + "x" * 196
    first_hop = "198.51.100." + "9" * 120

    response = await post_webhook(
        make_event("payment.captured"),
        event_id=event_id,
        signature="0" * 64,
        headers={"x-forwarded-for": f"{first_hop}, 10.0.0.1"},
    )

    assert response.status_code == 401
    logs = await fetch_logs(event_id)
    assert len(logs) == 1
    assert logs[0]["razorpay_event_id"] == event_id
    assert logs[0]["ip_address"] == first_hop


@pytest.mark.parametrize(
    "column",
    ["event", "razorpay_event_id", "razorpay_order_id", "razorpay_payment_id", "ip_address"],
)
def test_sender_controlled_audit_columns_are_unbounded(column):
    assert isinstance(payment_webhook_logs.c[column].type, Text)


@pytest.mark.asyncio
async def test_missing_webhook_secret_returns_500(tmp_path, database, make_event, sign):
    """Server without a secret refuses every delivery"""
    settings = Settings(
        _env_file=None,
        environment="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        razorpay_webhook_secret=None,
    )
    app = create_app(settings=settings, database=database)
    body = json.dumps(make_event("payment.captured")).encode("utf-8")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post(
            "/webhooks/razorpay",
            content=body,
            headers={"x-razorpay-signature": sign(body)},
        )

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook not configured"}


@pytest.mark.asyncio
async def test_unknown_provider_returns_404(async_client):
    response = await async_client.post("/webhooks/stripe", content=b"{}")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_unrecognized_event_is_acknowledged(
    post_webhook, make_event, seed_payment, fetch_payment, fetch_logs, mock_sqs_service
):
    payment_id = await seed_payment()

    response = await post_webhook(make_event("refund.created"), event_id="evt_refund_1")

    assert response.json() == {"status": "ok", "event": "refund.created", "processed": True}
    assert (await fetch_payment(payment_id))["status"] == "pending"
    assert (await fetch_logs("evt_refund_1"))[0]["status"] == "PROCESSED"
    mock_sqs_service.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_capture_for_unknown_order_is_logged_failed(
    post_webhook, make_event, fetch_logs, mock_sqs_service
):
    response = await post_webhook(
        make_event("payment.captured", order_id="order_missing"), event_id="evt_orphan_1"
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "event": "payment.captured", "processed": False}

    logs = await fetch_logs("evt_orphan_1")
    assert logs[0]["status"] == "FAILED"
    assert logs[0]["error"] == "Payment not found for order order_missing"
    mock_sqs_service.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_failed_event_after_capture_keeps_payment_completed(
    post_webhook, make_event, seed_payment, fetch_payment, mock_sqs_service
):
    """Out-of-order payment.failed never regresses a completed payment"""
    payment_id = await seed_payment(status="completed", razorpay_payment_id="pay_good")

    response = await post_webhook(
        make_event(
            "payment.failed",
            payment_id="pay_old_attempt",
            error_code="BAD_REQUEST_ERROR",
            error_description="Payment declined by bank",
        ),
        event_id="evt_late_fail",
    )

    assert response.json() == {"status": "ok", "event": "payment.failed", "processed": True}
    payment = await fetch_payment(payment_id)
    assert payment["status"] == "completed"
    assert payment["failure_reason"] is None
    assert payment["razorpay_payment_id"] == "pay_good"
    mock_sqs_service.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_failed_then_retried_payment_completes(
    post_webhook, make_event, seed_payment, fetch_payment, mock_sqs_service
):
    payment_id = await seed_payment()

    failed = await post_webhook(
        make_event(
            "payment.failed",
            payment_id="pay_first_try",
            error_code="BAD_REQUEST_ERROR",
            error_description="Card declined",
        ),
        event_id="evt_fail_1",
    )
    payment = await fetch_payment(payment_id)
    assert failed.json()["processed"] is True
    assert payment["status"] == "failed"
    assert payment["failure_reason"] == "Card declined"

    captured = await post_webhook(
        make_event("payment.captured", payment_id="pay_second_try"), event_id="evt_cap_2"
    )
    payment = await fetch_payment(payment_id)
    assert captured.json()["processed"] is True
    assert payment["status"] == "completed"
    assert payment["razorpay_payment_id"] == "pay_second_try"

    kinds = [
        call.kwargs["message_body"]["kind"]
        for call in mock_sqs_service.send_message.call_args_list
    ]
    assert kinds == ["payment_failed", "payment_completed"]


@pytest.mark.asyncio
async def test_handler_error_is_acknowledged_and_logged(
    post_webhook, make_event, seed_payment, fetch_payment, fetch_logs, services
):
    """Infrastructure failure: 200 with status error, FAILED audit entry"""
    payment_id = await seed_payment()

    with patch.object(
        services.processor.router,
        "route_event",
        AsyncMock(side_effect=RuntimeError("connection reset")),
    ):
        response = await post_webhook(make_event("payment.captured"), event_id="evt_boom")

    assert response.status_code == 200
    assert response.json() == {"status": "error", "event": "payment.captured", "processed": False}
    assert (await fetch_payment(payment_id))["status"] == "pending"

    logs = await fetch_logs("evt_boom")
    assert len(logs) == 1
    assert logs[0]["status"] == "FAILED"
    assert logs[0]["error"] == "connection reset"


@pytest.mark.asyncio
async def test_failed_redelivery_is_processed_after_error(
    post_webhook, make_event, seed_payment, fetch_payment, services
):
    """A FAILED attempt does not make the event id count as processed"""
    payment_id = await seed_payment()
    body = make_event("payment.captured")

    with patch.object(
        services.processor.router,
        "route_event",
        AsyncMock(side_effect=RuntimeError("timeout")),
    ):
        await post_webhook(body, event_id="evt_retry_1")

    response = await post_webhook(body, event_id="evt_retry_1")

    assert response.json()["status"] == "ok"
    assert (await fetch_payment(payment_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_audit_write_failure_rolls_back_payment(
    post_webhook, make_event, seed_payment, fetch_payment, services, mock_sqs_service
):
    """Payment mutation and audit entry commit or roll back together"""
    payment_id = await seed_payment()

    with patch.object(
        services.log_service,
        "record",
        AsyncMock(side_effect=RuntimeError("audit insert failed")),
    ):
        response = await post_webhook(make_event("payment.captured"), event_id="evt_atomic")

    assert response.json()["status"] == "error"
    assert (await fetch_payment(payment_id))["status"] == "pending"
    mock_sqs_service.send_message.assert_not_called()


@pytest.mark.asyncio
async def test_idempotency_lookup_failure_still_processes(
    post_webhook, make_event, seed_payment, fetch_payment, services
):
    payment_id = await seed_payment()

    with patch.object(
        services.log_service,
        "is_event_processed",
        AsyncMock(side_effect=RuntimeError("read replica down")),
    ):
        response = await post_webhook(make_event("payment.captured"), event_id="evt_guard")

    assert response.json()["status"] == "ok"
    assert (await fetch_payment(payment_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_webhook(
    post_webhook, make_event, seed_payment, fetch_payment, mock_sqs_service
):
    payment_id = await seed_payment()
    mock_sqs_service.send_message.side_effect = QueueException("queue unavailable")

    response = await post_webhook(make_event("payment.captured"), event_id="evt_queue_down")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert (await fetch_payment(payment_id))["status"] == "completed"


@pytest.mark.asyncio
async def test_response_carries_correlation_id(post_webhook, make_event, seed_payment):
    await seed_payment()

    response = await post_webhook(
        make_event("payment.captured"),
        headers={"X-Correlation-ID": "corr-test-123"},
    )

    assert response.headers["X-Correlation-ID"] == "corr-test-123"
