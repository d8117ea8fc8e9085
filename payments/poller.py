"""Client-side polling for the outcome of an STK push.

The gateway reports the outcome to the callback endpoint, never to the
client, so the client watches the transaction row until it settles.
"""
import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Optional

import requests
from django.conf import settings

from .models import Transaction

logger = logging.getLogger(__name__)


class PollOutcome(str, enum.Enum):
    COMPLETED = 'completed'
    FAILED = 'failed'
    TIMEOUT = 'timeout'


@dataclass(frozen=True)
class PollBudget:
    max_attempts: int = 30
    interval: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")

    @classmethod
    def from_settings(cls):
        return cls(max_attempts=settings.MPESA_POLL_MAX_ATTEMPTS, interval=settings.MPESA_POLL_INTERVAL)


@dataclass
class PollResult:
    outcome: PollOutcome
    attempts: int
    result_desc: Optional[str] = None

    @property
    def message(self):
        if self.outcome is PollOutcome.COMPLETED:
            return "Payment successful. Your subscription has been activated."
        if self.outcome is PollOutcome.FAILED:
            return self.result_desc or "Payment was not completed."
        return ("We have not received confirmation yet. Please check your M-Pesa messages "
                "and contact support if the payment was deducted.")


class HttpStatusFetcher:
    """Reads a transaction's status from the status endpoint."""

    def __init__(self, base_url, timeout=10, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self, checkout_request_id):
        resp = self.session.get(
            f"{self.base_url}/payments/mpesa/status/{checkout_request_id}/",
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()


class LocalStatusFetcher:
    """Reads a transaction's status straight from the database."""

    def __call__(self, checkout_request_id):
        from .services.stk import get_transaction_status

        status = get_transaction_status(checkout_request_id)
        if status is None:
            raise LookupError(f"No transaction with CheckoutRequestID {checkout_request_id}")
        return status


class StatusPoller:
    def __init__(self, fetch_status, budget=None, sleep=asyncio.sleep):
        self.fetch_status = fetch_status
        self.budget = budget or PollBudget()
        self._sleep = sleep
        self._task = None

    async def _fetch(self, checkout_request_id):
        if inspect.iscoroutinefunction(self.fetch_status) or inspect.iscoroutinefunction(
            getattr(self.fetch_status, '__call__', None)
        ):
            return await self.fetch_status(checkout_request_id)
        result = await asyncio.to_thread(self.fetch_status, checkout_request_id)
        # partials and lambdas around async fetchers hand back a coroutine
        if inspect.isawaitable(result):
            result = await result
        return result

    async def poll(self, checkout_request_id):
        """Fetch the status until it is terminal or the attempt budget runs out."""
        for attempt in range(1, self.budget.max_attempts + 1):
            try:
                record = await self._fetch(checkout_request_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Status check %d for %s failed: %s", attempt, checkout_request_id, e)
                record = None

            status = record.get('status') if isinstance(record, dict) else None
            if status == Transaction.Status.COMPLETED:
                return PollResult(PollOutcome.COMPLETED, attempt)
            if status == Transaction.Status.FAILED:
                return PollResult(PollOutcome.FAILED, attempt, result_desc=record.get('resultDesc'))

            logger.debug("Transaction %s still %s after attempt %d", checkout_request_id, status, attempt)
            if attempt < self.budget.max_attempts:
                await self._sleep(self.budget.interval)

        logger.info("Gave up on %s after %d attempts", checkout_request_id, self.budget.max_attempts)
        return PollResult(PollOutcome.TIMEOUT, self.budget.max_attempts)

    def start(self, checkout_request_id):
        """Run ``poll`` as a task on the running loop. Must be called from async code."""
        self.cancel()
        self._task = asyncio.create_task(self.poll(checkout_request_id))
        return self._task

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
