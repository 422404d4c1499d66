"""Webhook reconciliation: verification, idempotent transitions, audit trail."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from checkoutflow.common.errors import BadRequest, DbWriteFailed, SignatureMismatch
from checkoutflow.common.payloads import normalize_fields
from checkoutflow.common.signature import sign_acknowledgement
from checkoutflow.services.webhook.service import WebhookReconciler
from checkoutflow.services.webhook.statuses import CoarseStatus, coarse_status

ORDER_REF = "short_20260314_0a1b2c3d"


@pytest.fixture
def order(store):
    return store.insert_order(ORDER_REF, "short", Decimal("1"), "UAH", "order_created", {})


@pytest.fixture
def reconciler(store, gateway):
    return WebhookReconciler(store, gateway, clock=lambda: 1773531000, backoff_seconds=0)


async def _deliver(reconciler, payload):
    return await reconciler.reconcile(normalize_fields(payload), payload)


class FlakyStore:
    """Wraps a real store and fails selected writes a fixed number of times."""

    def __init__(self, store, fail_transition=0, fail_payment=False):
        self._store = store
        self.fail_transition = fail_transition
        self.fail_payment = fail_payment
        self.transition_calls = 0

    def __getattr__(self, name):
        return getattr(self._store, name)

    def transition(self, *args, **kwargs):
        self.transition_calls += 1
        if self.transition_calls <= self.fail_transition:
            raise OperationalError("UPDATE orders", {}, Exception("connection reset"))
        return self._store.transition(*args, **kwargs)

    def record_payment(self, *args, **kwargs):
        if self.fail_payment:
            raise OperationalError("INSERT INTO payments", {}, Exception("disk full"))
        return self._store.record_payment(*args, **kwargs)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("APPROVED", CoarseStatus.PAID),
        ("Approved", CoarseStatus.PAID),
        ("SUCCESS", CoarseStatus.PAID),
        ("Declined", CoarseStatus.FAILED),
        ("expired", CoarseStatus.FAILED),
        ("declined", CoarseStatus.FAILED),
        ("created", CoarseStatus.NO_OP),
        ("pending", CoarseStatus.NO_OP),
        ("RefundInProcessing", CoarseStatus.NO_OP),
        ("InProcessing", CoarseStatus.NO_OP),
        ("Mystery", CoarseStatus.NO_OP),
        (None, CoarseStatus.NO_OP),
    ],
)
def test_status_mapping(raw, expected):
    assert coarse_status(raw) is expected


@pytest.mark.asyncio
async def test_approved_marks_paid_and_acks(store, order, reconciler, make_webhook, gateway):
    ack = await _deliver(reconciler, make_webhook(ORDER_REF, transactionId="tx-1"))

    assert store.get_order(ORDER_REF).status == "paid"
    assert ack.as_response() == {
        "orderReference": ORDER_REF,
        "status": "accept",
        "time": 1773531000,
        "signature": sign_acknowledgement(gateway.secret_key, ORDER_REF, 1773531000),
    }
    assert len(store.list_events(order_ref=ORDER_REF, event_type="order_paid")) == 1
    assert store.latest_payment(ORDER_REF).provider_tx_id == "tx-1"


@pytest.mark.asyncio
async def test_replay_is_idempotent(store, order, reconciler, make_webhook):
    payload = make_webhook(ORDER_REF, transactionId="tx-1")
    first = await _deliver(reconciler, payload)
    second = await _deliver(reconciler, payload)

    assert first.as_response() == second.as_response()
    assert store.get_order(ORDER_REF).status == "paid"
    assert len(store.list_events(order_ref=ORDER_REF, event_type="order_paid")) == 1
    assert len(store.list_payments(ORDER_REF)) == 1
    assert len(store.list_events(order_ref=ORDER_REF, event_type="wfp_webhook_raw")) == 2


@pytest.mark.asyncio
async def test_late_decline_does_not_flip_paid(store, order, reconciler, make_webhook):
    await _deliver(reconciler, make_webhook(ORDER_REF, "Approved"))
    await _deliver(reconciler, make_webhook(ORDER_REF, "Declined"))

    assert store.get_order(ORDER_REF).status == "paid"
    assert not store.list_events(order_ref=ORDER_REF, event_type="order_failed")
    txs = {p.provider_tx_id for p in store.list_payments(ORDER_REF)}
    assert txs == {f"{ORDER_REF}:approved", f"{ORDER_REF}:declined"}


@pytest.mark.asyncio
async def test_new_status_for_same_transaction_keeps_history(store, order, reconciler, make_webhook):
    await _deliver(reconciler, make_webhook(ORDER_REF, "Approved", transactionId="tx-1"))
    await _deliver(reconciler, make_webhook(ORDER_REF, "Refunded", transactionId="tx-1"))
    await _deliver(reconciler, make_webhook(ORDER_REF, "Refunded", transactionId="tx-1"))

    payments = store.list_payments(ORDER_REF)
    assert {p.status for p in payments} == {"Approved", "Refunded"}
    assert len(payments) == 2
    approved = next(p for p in payments if p.status == "Approved")
    assert approved.raw_payload["transactionStatus"] == "Approved"
    assert store.get_order(ORDER_REF).status == "paid"


@pytest.mark.asyncio
async def test_declined_marks_failed(store, order, reconciler, make_webhook):
    await _deliver(reconciler, make_webhook(ORDER_REF, "Declined", reasonCode=1101))
    assert store.get_order(ORDER_REF).status == "failed"


@pytest.mark.asyncio
async def test_pending_status_is_recorded_without_transition(store, order, reconciler, make_webhook):
    ack = await _deliver(reconciler, make_webhook(ORDER_REF, "InProcessing"))
    assert ack.order_ref == ORDER_REF
    assert store.get_order(ORDER_REF).status == "created"
    assert store.latest_payment(ORDER_REF).status == "InProcessing"


@pytest.mark.asyncio
async def test_tampered_payload_is_rejected(store, order, reconciler, make_webhook):
    payload = make_webhook(ORDER_REF)
    payload["amount"] = 9999

    with pytest.raises(SignatureMismatch):
        await _deliver(reconciler, payload)

    assert store.get_order(ORDER_REF).status == "created"
    assert not store.list_payments(ORDER_REF)
    rejected = store.list_events(order_ref=ORDER_REF, event_type="wfp_bad_signature")
    assert len(rejected) == 1
    assert "9999" in rejected[0].payload["signed"]


@pytest.mark.asyncio
async def test_missing_order_reference(store, reconciler, make_webhook):
    payload = make_webhook("")
    with pytest.raises(BadRequest):
        await _deliver(reconciler, payload)


@pytest.mark.asyncio
async def test_unknown_order_is_acknowledged(store, reconciler, make_webhook):
    ack = await _deliver(reconciler, make_webhook("irem_20260314_ffffffff"))
    assert ack.order_ref == "irem_20260314_ffffffff"
    assert store.get_order("irem_20260314_ffffffff") is None
    assert store.list_events(order_ref="irem_20260314_ffffffff", event_type="webhook_unknown_order")
    raw = store.list_events(order_ref="irem_20260314_ffffffff", event_type="wfp_webhook_raw")
    assert raw[0].payload["transactionStatus"] == "Approved"


@pytest.mark.asyncio
async def test_status_write_retried_then_applied(store, order, gateway, make_webhook):
    flaky = FlakyStore(store, fail_transition=2)
    reconciler = WebhookReconciler(flaky, gateway, backoff_seconds=0)

    await _deliver(reconciler, make_webhook(ORDER_REF))

    assert flaky.transition_calls == 3
    assert store.get_order(ORDER_REF).status == "paid"


@pytest.mark.asyncio
async def test_status_write_exhaustion_surfaces(store, order, gateway, make_webhook):
    flaky = FlakyStore(store, fail_transition=5)
    reconciler = WebhookReconciler(flaky, gateway, backoff_seconds=0)

    with pytest.raises(DbWriteFailed) as excinfo:
        await _deliver(reconciler, make_webhook(ORDER_REF))

    assert excinfo.value.table == "orders"
    assert excinfo.value.status_code == 500
    assert flaky.transition_calls == 3
    assert store.get_order(ORDER_REF).status == "created"


@pytest.mark.asyncio
async def test_audit_write_failure_still_acknowledged(store, order, gateway, make_webhook):
    reconciler = WebhookReconciler(FlakyStore(store, fail_payment=True), gateway, backoff_seconds=0)

    ack = await _deliver(reconciler, make_webhook(ORDER_REF))

    assert ack.order_ref == ORDER_REF
    assert store.get_order(ORDER_REF).status == "paid"
    assert not store.list_payments(ORDER_REF)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["created", "Pending"])
async def test_non_terminal_statuses_leave_order_created(store, order, reconciler, make_webhook, status):
    await _deliver(reconciler, make_webhook(ORDER_REF, status))
    assert store.get_order(ORDER_REF).status == "created"
    assert not store.list_events(order_ref=ORDER_REF, event_type="order_paid")


@pytest.mark.asyncio
async def test_tampered_status_is_rejected(store, order, reconciler, make_webhook):
    payload = make_webhook(ORDER_REF, "Declined")
    payload["transactionStatus"] = "Approved"

    with pytest.raises(SignatureMismatch):
        await _deliver(reconciler, payload)
    assert store.get_order(ORDER_REF).status == "created"
