"""STK push lifecycle: initiate, settle from the gateway callback, report status.

The callback is the only writer of a transaction's final status. A row leaves
``pending`` through a conditional update, so repeated or out-of-order
callbacks for the same CheckoutRequestID cannot change a settled outcome.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError, transaction as db_transaction
from django.utils import timezone

from ..exceptions import CallbackMalformed, PersistenceError
from ..models import Transaction
from ..validators import (
    normalize_phone_number,
    to_msisdn,
    validate_amount,
    validate_identifier,
    validate_user_type,
)
from .subscriptions import activate_subscription

logger = logging.getLogger(__name__)


class CallbackResult(str, enum.Enum):
    APPLIED = 'applied'
    DUPLICATE = 'duplicate'
    UNKNOWN = 'unknown'


@dataclass
class CallbackOutcome:
    result: CallbackResult
    checkout_request_id: str
    transaction: Optional[Transaction] = None

    @property
    def status(self):
        return self.transaction.status if self.transaction else None


@dataclass
class StkCallback:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: int
    result_desc: str
    receipt_number: Optional[str] = None

    @property
    def succeeded(self):
        return self.result_code == 0


def account_reference(user_type, user_id):
    return f"{user_type}-{user_id}"


def transaction_description(plan):
    return f"CareFlow Vision - {plan} Plan"


def initiate_payment(gateway, phone_number, amount, plan, user_id, user_type):
    """Validate the request, send the STK push and record a pending transaction.

    Raises ValidationError before any network call, CredentialError or
    PaymentInitiationError when the gateway does not accept the push (no row
    is written), and PersistenceError when the row cannot be saved after the
    gateway already accepted.
    """
    phone = normalize_phone_number(phone_number)
    amount = validate_amount(amount)
    plan = validate_identifier(plan, "plan")
    user_id = validate_identifier(user_id, "userId")
    user_type = validate_user_type(user_type)

    logger.info("Initiating STK push for %s:%s plan=%r amount=%s", user_type, user_id, plan, amount)
    accepted = gateway.stk_push(
        phone=to_msisdn(phone),
        amount=amount,
        account_reference=account_reference(user_type, user_id),
        transaction_desc=transaction_description(plan),
    )
    checkout_request_id = accepted['CheckoutRequestID']
    merchant_request_id = accepted.get('MerchantRequestID')

    try:
        txn = Transaction.objects.create(
            user_id=user_id,
            user_type=user_type,
            amount=amount,
            plan=plan,
            status=Transaction.Status.PENDING,
            phone_number=phone,
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
        )
    except DatabaseError as e:
        logger.critical(
            "STK push %s (merchant %s) was accepted by the gateway but could not be recorded: "
            "%s:%s amount=%s phone=%s error=%s",
            checkout_request_id, merchant_request_id, user_type, user_id, amount, phone, e,
        )
        raise PersistenceError(
            "Payment was sent to your phone but could not be recorded. Please contact support.",
            checkout_request_id=checkout_request_id,
        ) from e

    logger.info("STK push accepted: checkout=%s merchant=%s", checkout_request_id, merchant_request_id)
    return txn


def _clip(value, field_name):
    if value is None:
        return None
    return value[:Transaction._meta.get_field(field_name).max_length]


def _receipt_number(stk):
    metadata = stk.get("CallbackMetadata")
    if not isinstance(metadata, dict):
        return None
    for item in metadata.get("Item") or []:
        if isinstance(item, dict) and item.get("Name") == "MpesaReceiptNumber":
            value = item.get("Value")
            return str(value) if value is not None else None
    return None


def parse_callback(payload):
    if not isinstance(payload, dict):
        raise CallbackMalformed("Callback body must be a JSON object")
    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise CallbackMalformed("Callback is missing Body.stkCallback")

    checkout_request_id = stk.get("CheckoutRequestID")
    if not isinstance(checkout_request_id, str) or not checkout_request_id.strip():
        raise CallbackMalformed("Callback is missing CheckoutRequestID")

    raw_code = stk.get("ResultCode")
    if isinstance(raw_code, bool) or raw_code is None:
        raise CallbackMalformed("Callback is missing a numeric ResultCode")
    try:
        result_code = int(raw_code)
    except (TypeError, ValueError):
        raise CallbackMalformed(f"Callback ResultCode is not numeric: {raw_code!r}") from None

    result_desc = stk.get("ResultDesc")
    if not isinstance(result_desc, str) or not result_desc.strip():
        result_desc = f"ResultCode {result_code}"

    return StkCallback(
        checkout_request_id=checkout_request_id.strip(),
        merchant_request_id=stk.get("MerchantRequestID"),
        result_code=result_code,
        result_desc=_clip(result_desc, "result_desc"),
        receipt_number=_clip(_receipt_number(stk), "mpesa_receipt_number") if result_code == 0 else None,
    )


def process_callback(payload):
    """Settle the pending transaction named by a gateway callback.

    Only a ``pending`` row is updated; a settled row is reported as a
    duplicate and left alone. Raises CallbackMalformed for a bad envelope and
    PersistenceError when the database fails.
    """
    callback = parse_callback(payload)
    status = Transaction.Status.COMPLETED if callback.succeeded else Transaction.Status.FAILED

    try:
        with db_transaction.atomic():
            updated = Transaction.objects.filter(
                checkout_request_id=callback.checkout_request_id,
                status=Transaction.Status.PENDING,
            ).update(
                status=status,
                result_code=callback.result_code,
                result_desc=callback.result_desc,
                mpesa_receipt_number=callback.receipt_number,
                raw_callback=payload,
                updated_at=timezone.now(),
            )
            txn = Transaction.objects.filter(checkout_request_id=callback.checkout_request_id).first()
            if updated and status == Transaction.Status.COMPLETED:
                activate_subscription(txn)
    except DatabaseError as e:
        logger.error("Failed to record callback for %s: %s", callback.checkout_request_id, e)
        raise PersistenceError(
            "Callback could not be recorded",
            checkout_request_id=callback.checkout_request_id,
        ) from e

    if txn is None:
        logger.warning("Callback for unknown CheckoutRequestID %s ignored", callback.checkout_request_id)
        return CallbackOutcome(CallbackResult.UNKNOWN, callback.checkout_request_id)

    if not updated:
        logger.info(
            "Duplicate callback for %s (code %s) ignored; transaction already %s",
            callback.checkout_request_id, callback.result_code, txn.status,
        )
        return CallbackOutcome(CallbackResult.DUPLICATE, callback.checkout_request_id, txn)

    logger.info(
        "Transaction %s %s: %s (code %s)",
        callback.checkout_request_id, status, callback.result_desc, callback.result_code,
    )
    return CallbackOutcome(CallbackResult.APPLIED, callback.checkout_request_id, txn)


def get_transaction_status(checkout_request_id):
    """Return ``{"status", "resultDesc"}`` for a checkout id, or None if unknown."""
    try:
        row = (
            Transaction.objects
            .filter(checkout_request_id=checkout_request_id)
            .values('status', 'result_desc')
            .first()
        )
    except DatabaseError as e:
        raise PersistenceError("Transaction status lookup failed", checkout_request_id=checkout_request_id) from e
    if row is None:
        return None
    return {"status": row['status'], "resultDesc": row['result_desc']}


def list_transactions(user_id, user_type):
    user_id = validate_identifier(user_id, "userId")
    user_type = validate_user_type(user_type)
    try:
        return list(Transaction.objects.filter(user_id=user_id, user_type=user_type).order_by('-created_at'))
    except DatabaseError as e:
        raise PersistenceError("Transaction history lookup failed") from e
