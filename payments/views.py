import json
import logging

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .exceptions import (
    CallbackMalformed,
    CredentialError,
    PaymentInitiationError,
    PersistenceError,
    ValidationError,
)
from .services.mpesa import MpesaDarajaClient
from .services.stk import (
    CallbackResult,
    get_transaction_status,
    initiate_payment,
    list_transactions,
    process_callback,
)
from .services.subscriptions import activate_trial, get_subscription

logger = logging.getLogger(__name__)


def get_gateway():
    return MpesaDarajaClient.from_settings()


def _json_body(request):
    try:
        payload = json.loads(request.body.decode('utf-8'))
    except (UnicodeDecodeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def _error(message, status):
    return JsonResponse({'success': False, 'error': message}, status=status)


def _transaction_dict(txn):
    return {
        'id': str(txn.id),
        'userId': txn.user_id,
        'userType': txn.user_type,
        'amount': txn.amount,
        'plan': txn.plan,
        'status': txn.status,
        'phoneNumber': txn.phone_number,
        'checkoutRequestId': txn.checkout_request_id,
        'merchantRequestId': txn.merchant_request_id,
        'resultCode': txn.result_code,
        'resultDesc': txn.result_desc,
        'mpesaReceiptNumber': txn.mpesa_receipt_number,
        'createdAt': txn.created_at.isoformat(),
        'updatedAt': txn.updated_at.isoformat(),
    }


def _subscriber_dict(subscriber):
    return {
        'userId': subscriber.user_id,
        'userType': subscriber.user_type,
        'subscribed': subscriber.subscribed,
        'active': subscriber.is_active,
        'subscriptionTier': subscriber.subscription_tier,
        'subscriptionEnd': subscriber.subscription_end.isoformat() if subscriber.subscription_end else None,
    }


@csrf_exempt
@require_POST
def mpesa_initiate(request):
    payload = _json_body(request)
    if payload is None:
        return _error('Request body must be a JSON object', 400)

    try:
        txn = initiate_payment(
            get_gateway(),
            phone_number=payload.get('phoneNumber'),
            amount=payload.get('amount'),
            plan=payload.get('plan'),
            user_id=payload.get('userId'),
            user_type=payload.get('userType'),
        )
    except ValidationError as e:
        return _error(str(e), 400)
    except CredentialError as e:
        logger.error("Could not obtain M-Pesa access token: %s", e)
        return _error('Payment service is temporarily unavailable. Please try again.', 502)
    except PaymentInitiationError as e:
        logger.warning("STK push rejected: %s", e)
        return _error(str(e), 502)
    except PersistenceError as e:
        return JsonResponse({
            'success': False,
            'error': str(e),
            'checkoutRequestId': e.checkout_request_id,
        }, status=500)

    return JsonResponse({
        'success': True,
        'message': 'STK push sent successfully. Please check your phone.',
        'checkoutRequestId': txn.checkout_request_id,
        'merchantRequestId': txn.merchant_request_id,
    })


@csrf_exempt
@require_POST
def mpesa_callback(request):
    try:
        payload = json.loads(request.body.decode('utf-8'))
    except (UnicodeDecodeError, ValueError):
        logger.warning("Rejected M-Pesa callback with unreadable body")
        return JsonResponse({'success': False, 'message': 'Invalid JSON'}, status=400)

    try:
        outcome = process_callback(payload)
    except CallbackMalformed as e:
        logger.warning("Rejected malformed M-Pesa callback: %s", e)
        return JsonResponse({'success': False, 'message': str(e)}, status=400)
    except PersistenceError:
        return JsonResponse({'success': False, 'message': 'Callback processing failed'}, status=500)

    messages = {
        CallbackResult.APPLIED: 'Callback processed successfully',
        CallbackResult.DUPLICATE: 'Callback already processed',
        CallbackResult.UNKNOWN: 'No matching transaction',
    }
    return JsonResponse({'success': True, 'message': messages[outcome.result]})


@require_GET
def transaction_status(request, checkout_request_id):
    try:
        status = get_transaction_status(checkout_request_id)
    except PersistenceError:
        return _error('Failed to get transaction status', 500)
    if status is None:
        return _error('Transaction not found', 404)
    return JsonResponse(status)


@require_GET
def gateway_status_query(request, checkout_request_id):
    # Read-only: the callback is what settles a transaction.
    try:
        status = get_transaction_status(checkout_request_id)
    except PersistenceError:
        return _error('Failed to get transaction status', 500)
    if status is None:
        return _error('Transaction not found', 404)

    try:
        gateway = get_gateway().stk_query(checkout_request_id)
    except (CredentialError, PaymentInitiationError) as e:
        logger.warning("STK query for %s failed: %s", checkout_request_id, e)
        return _error(str(e), 502)

    return JsonResponse({**status, 'gateway': gateway})


@require_GET
def transactions_list(request):
    try:
        transactions = list_transactions(request.GET.get('userId'), request.GET.get('userType'))
        data = [_transaction_dict(txn) for txn in transactions]
    except ValidationError as e:
        return _error(str(e), 400)
    except PersistenceError as e:
        return _error(str(e), 500)
    return JsonResponse({'transactions': data})


@require_GET
def subscription_status(request):
    try:
        subscriber = get_subscription(request.GET.get('userId'), request.GET.get('userType'))
    except ValidationError as e:
        return _error(str(e), 400)
    except PersistenceError as e:
        return _error(str(e), 500)
    if subscriber is None:
        return JsonResponse({'subscribed': False, 'active': False})
    return JsonResponse(_subscriber_dict(subscriber))


@csrf_exempt
@require_POST
def free_trial(request):
    payload = _json_body(request)
    if payload is None:
        return _error('Request body must be a JSON object', 400)

    try:
        subscriber = activate_trial(payload.get('userId'), payload.get('userType'))
    except ValidationError as e:
        return _error(str(e), 400)
    except PersistenceError as e:
        return _error(str(e), 500)

    return JsonResponse({
        'success': True,
        'message': 'Free trial activated successfully',
        'subscription': _subscriber_dict(subscriber),
    })
