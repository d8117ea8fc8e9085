import copy
from unittest.mock import patch

import pytest
from django.db import DatabaseError

from payments.exceptions import CallbackMalformed, PersistenceError
from payments.models import Subscriber, Transaction
from payments.services.stk import CallbackResult, parse_callback, process_callback
from tests.factories import callback_payload

pytestmark = pytest.mark.django_db


def test_success_completes_and_activates_subscription(pending_transaction):
    payload = callback_payload(pending_transaction.checkout_request_id, 0, receipt="RJ41XYZ123")

    outcome = process_callback(payload)

    assert outcome.result is CallbackResult.APPLIED
    assert outcome.status == Transaction.Status.COMPLETED
    txn = Transaction.objects.get(pk=pending_transaction.pk)
    assert txn.status == Transaction.Status.COMPLETED
    assert txn.result_code == 0
    assert txn.result_desc == "The service request is processed successfully."
    assert txn.mpesa_receipt_number == "RJ41XYZ123"
    assert txn.raw_callback == payload

    subscriber = Subscriber.objects.get(user_id="P-001", user_type="patient")
    assert subscriber.is_active
    assert subscriber.subscription_tier == "Nairobi Basic"


def test_user_cancelled_marks_failed(pending_transaction):
    outcome = process_callback(callback_payload(pending_transaction.checkout_request_id, 1032))

    assert outcome.result is CallbackResult.APPLIED
    txn = Transaction.objects.get(pk=pending_transaction.pk)
    assert txn.status == Transaction.Status.FAILED
    assert txn.result_code == 1032
    assert txn.result_desc == "Request cancelled by user"
    assert txn.mpesa_receipt_number is None
    assert not Subscriber.objects.exists()


def test_duplicate_callback_is_a_no_op(pending_transaction):
    """
    Test case: at-least-once delivery; the second identical callback changes nothing.
    """
    payload = callback_payload(pending_transaction.checkout_request_id, 0)
    process_callback(payload)
    settled = Transaction.objects.get(pk=pending_transaction.pk)
    subscription_end = Subscriber.objects.get().subscription_end

    outcome = process_callback(copy.deepcopy(payload))

    assert outcome.result is CallbackResult.DUPLICATE
    again = Transaction.objects.get(pk=pending_transaction.pk)
    assert again.status == Transaction.Status.COMPLETED
    assert again.updated_at == settled.updated_at
    assert Subscriber.objects.count() == 1
    assert Subscriber.objects.get().subscription_end == subscription_end


def test_failure_after_completion_does_not_regress(pending_transaction):
    checkout_id = pending_transaction.checkout_request_id
    process_callback(callback_payload(checkout_id, 0))

    outcome = process_callback(callback_payload(checkout_id, 1032))

    assert outcome.result is CallbackResult.DUPLICATE
    txn = Transaction.objects.get(pk=pending_transaction.pk)
    assert txn.status == Transaction.Status.COMPLETED
    assert txn.result_code == 0


def test_completion_after_failure_does_not_flip(pending_transaction):
    checkout_id = pending_transaction.checkout_request_id
    process_callback(callback_payload(checkout_id, 1037, "DS timeout user cannot be reached"))

    outcome = process_callback(callback_payload(checkout_id, 0))

    assert outcome.result is CallbackResult.DUPLICATE
    txn = Transaction.objects.get(pk=pending_transaction.pk)
    assert txn.status == Transaction.Status.FAILED
    assert txn.result_desc == "DS timeout user cannot be reached"
    assert not Subscriber.objects.exists()


def test_unknown_checkout_id_is_acknowledged(pending_transaction):
    outcome = process_callback(callback_payload("ws_CO_DOES_NOT_EXIST", 0))

    assert outcome.result is CallbackResult.UNKNOWN
    assert outcome.transaction is None
    assert Transaction.objects.get(pk=pending_transaction.pk).status == Transaction.Status.PENDING


def test_string_result_code_accepted(pending_transaction):
    payload = callback_payload(pending_transaction.checkout_request_id, 0)
    payload["Body"]["stkCallback"]["ResultCode"] = "0"

    process_callback(payload)

    assert Transaction.objects.get(pk=pending_transaction.pk).status == Transaction.Status.COMPLETED


def test_missing_result_desc_gets_placeholder():
    payload = callback_payload("ws_CO_1", 2001)
    del payload["Body"]["stkCallback"]["ResultDesc"]

    assert parse_callback(payload).result_desc == "ResultCode 2001"


def test_long_gateway_text_is_clipped_to_columns(pending_transaction):
    payload = callback_payload(pending_transaction.checkout_request_id, 0, result_desc="x" * 1000, receipt="R" * 200)

    outcome = process_callback(payload)

    assert outcome.result is CallbackResult.APPLIED
    txn = Transaction.objects.get(pk=pending_transaction.pk)
    assert txn.result_desc == "x" * 256
    assert txn.mpesa_receipt_number == "R" * 64
    assert txn.raw_callback == payload


@pytest.mark.parametrize("payload", [
    [],
    "Body",
    {},
    {"Body": None},
    {"Body": {}},
    {"Body": {"stkCallback": "x"}},
    {"Body": {"stkCallback": {"ResultCode": 0, "ResultDesc": "ok"}}},
    {"Body": {"stkCallback": {"CheckoutRequestID": "", "ResultCode": 0}}},
    {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1"}}},
    {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": "zero"}}},
    {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": True}}},
])
def test_malformed_envelopes_touch_nothing(pending_transaction, payload):
    with pytest.raises(CallbackMalformed):
        process_callback(payload)

    assert Transaction.objects.get(pk=pending_transaction.pk).status == Transaction.Status.PENDING


def test_database_failure_raises_persistence_error(pending_transaction):
    payload = callback_payload(pending_transaction.checkout_request_id, 0)

    with patch("payments.services.stk.activate_subscription", side_effect=DatabaseError("locked")):
        with pytest.raises(PersistenceError) as exc:
            process_callback(payload)

    assert exc.value.checkout_request_id == pending_transaction.checkout_request_id
    # Rolled back together with the subscription, so a redelivery can still settle it.
    assert Transaction.objects.get(pk=pending_transaction.pk).status == Transaction.Status.PENDING
    assert process_callback(payload).result is CallbackResult.APPLIED


def test_end_to_end_scenario(gateway):
    """
    Test case: initiate, then settle one push as completed and another as cancelled.
    """
    from payments.services.stk import get_transaction_status, initiate_payment

    paid = initiate_payment(gateway, "0722000000", 2000, "Nairobi Basic", "P-001", "patient")
    assert paid.status == "pending"
    assert paid.phone_number == "+254722000000"
    assert paid.checkout_request_id

    process_callback(callback_payload(paid.checkout_request_id, 0))
    assert get_transaction_status(paid.checkout_request_id)["status"] == "completed"

    cancelled = initiate_payment(gateway, "0722000000", 2000, "Nairobi Basic", "P-001", "patient")
    process_callback(callback_payload(cancelled.checkout_request_id, 1032))
    status = get_transaction_status(cancelled.checkout_request_id)
    assert status["status"] == "failed"
    assert status["resultDesc"]
