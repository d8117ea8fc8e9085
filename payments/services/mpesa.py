import base64
import logging

import requests
from django.conf import settings
from django.core.cache import cache
from django.urls import reverse
from django.utils import timezone
from requests.auth import HTTPBasicAuth

from ..exceptions import CredentialError, PaymentInitiationError
from .base import PaymentGateway

logger = logging.getLogger(__name__)

SANDBOX_URL = 'https://sandbox.safaricom.co.ke'
PRODUCTION_URL = 'https://api.safaricom.co.ke'


class TokenCache:
    """OAuth bearer token for the Daraja API, held in the Django cache until it expires."""

    def __init__(self, base_url, consumer_key, consumer_secret, expiry_margin=60, timeout=30):
        self.base_url = base_url
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.expiry_margin = expiry_margin
        self.timeout = timeout

    @property
    def cache_key(self):
        return f"mpesa:access_token:{self.base_url}:{self.consumer_key}"

    def get_token(self):
        token = cache.get(self.cache_key)
        if token:
            return token

        token, expires_in = self._fetch()
        ttl = max(expires_in - self.expiry_margin, 1)
        cache.set(self.cache_key, token, timeout=ttl)
        logger.info("Fetched new M-Pesa access token (valid for %ss)", expires_in)
        return token

    def invalidate(self):
        cache.delete(self.cache_key)

    def _fetch(self):
        url = f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials"
        try:
            response = requests.get(
                url,
                auth=HTTPBasicAuth(self.consumer_key, self.consumer_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CredentialError(f"MPESA OAuth request failed: {e}") from e

        if not response.ok:
            raise CredentialError(
                f"MPESA OAuth error: status={response.status_code}, body={response.text}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise CredentialError(
                f"MPESA OAuth returned non-JSON body: status={response.status_code}, body={response.text}"
            ) from e
        if not isinstance(data, dict) or not data.get("access_token"):
            raise CredentialError(f"MPESA OAuth JSON missing access_token: {data}")

        try:
            expires_in = int(data.get("expires_in", 3599))
        except (TypeError, ValueError):
            expires_in = 3599
        return data["access_token"], expires_in


class MpesaDarajaClient(PaymentGateway):
    def __init__(self, env, consumer_key, consumer_secret, shortcode, passkey, callback_url,
                 base_url=None, token_expiry_margin=60, timeout=30):
        self.env = env
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.timeout = timeout

        self.base_url = (base_url or (SANDBOX_URL if env == 'sandbox' else PRODUCTION_URL)).rstrip('/')
        self.tokens = TokenCache(
            self.base_url,
            consumer_key,
            consumer_secret,
            expiry_margin=token_expiry_margin,
            timeout=timeout,
        )

    @classmethod
    def from_settings(cls):
        callback_base = settings.MPESA_CALLBACK_BASE_URL.rstrip('/')
        return cls(
            env=settings.MPESA_ENV,
            consumer_key=settings.MPESA_CONSUMER_KEY,
            consumer_secret=settings.MPESA_CONSUMER_SECRET,
            shortcode=settings.MPESA_SHORTCODE,
            passkey=settings.MPESA_PASSKEY,
            callback_url=f"{callback_base}{reverse('mpesa_callback')}",
            base_url=settings.MPESA_BASE_URL or None,
            token_expiry_margin=settings.MPESA_TOKEN_EXPIRY_MARGIN,
            timeout=settings.MPESA_HTTP_TIMEOUT,
        )

    def _timestamp(self):
        return timezone.localtime().strftime('%Y%m%d%H%M%S')

    def _password(self, timestamp):
        raw = f"{self.shortcode}{self.passkey}{timestamp}".encode('utf-8')
        return base64.b64encode(raw).decode('utf-8')

    def _post(self, path, payload):
        token = self.tokens.get_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        resp = requests.post(f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout)
        if resp.status_code == 401:
            # Token revoked before its advertised expiry; the next call fetches a fresh one.
            self.tokens.invalidate()
        return resp

    def stk_push(self, phone, amount, account_reference, transaction_desc):
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc,
        }
        try:
            resp = self._post("/mpesa/stkpush/v1/processrequest", payload)
        except requests.RequestException as e:
            raise PaymentInitiationError(f"Failed to reach MPESA STK API: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise PaymentInitiationError(
                f"MPESA STK API returned non-JSON body: status={resp.status_code}, body={resp.text}"
            ) from e
        if not isinstance(data, dict):
            raise PaymentInitiationError(f"Unexpected MPESA STK response: {data}")

        # Daraja signals acceptance with ResponseCode "0"; rejections carry errorCode/errorMessage.
        if str(data.get('ResponseCode')) != '0' or not data.get('CheckoutRequestID'):
            message = data.get('errorMessage') or data.get('ResponseDescription') or "STK Push was not accepted"
            raise PaymentInitiationError(message, response=data)
        return data

    def stk_query(self, checkout_request_id):
        timestamp = self._timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        try:
            resp = self._post("/mpesa/stkpushquery/v1/query", payload)
        except requests.RequestException as e:
            raise PaymentInitiationError(f"Failed to reach MPESA STK Query API: {e}") from e

        try:
            return resp.json()
        except ValueError:
            return {"raw": resp.text, "status_code": resp.status_code}
