"""Payment provider collaborators used by the disbursement coordinator.

Providers must honor the idempotency key: a second call with the same key
returns the first call's result instead of moving money twice.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

import httpx

from payouts.config import settings
from payouts.services.errors import ProviderUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisbursementResult:
    success: bool
    reason: str | None = None
    payment_id: str | None = None


class PaymentProvider(Protocol):
    async def disburse(
        self,
        idempotency_key: str,
        destination: str | None,
        amount: int,
    ) -> DisbursementResult:
        """Send amount (minor units) to destination.

        Raises ProviderUnavailableError for transient failures; permanent
        rejections come back as DisbursementResult(success=False).
        """
        ...


class HttpPaymentProvider:
    """Payout API over HTTP, keyed by the Idempotency-Key header."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.payment_provider_url).rstrip('/')
        self._api_key = api_key if api_key is not None else settings.payment_provider_api_key
        self._timeout = timeout or settings.payment_provider_timeout_seconds
        self._transport = transport

    async def disburse(
        self,
        idempotency_key: str,
        destination: str | None,
        amount: int,
    ) -> DisbursementResult:
        if not self._base_url:
            raise RuntimeError('PAYMENT_PROVIDER_URL is required when PAYMENT_PROVIDER=http')

        url = f'{self._base_url}/payouts'
        headers = {'Idempotency-Key': idempotency_key}
        if self._api_key:
            headers['Authorization'] = f'Bearer {self._api_key}'
        body = {'destination': destination, 'amount': amount, 'reference': idempotency_key}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.TransportError as e:
            raise ProviderUnavailableError(f'Payment provider unreachable: {e}') from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailableError(
                f'Payment provider returned {response.status_code}'
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.status_code >= 400:
            reason = payload.get('error') or payload.get('message') or f'HTTP {response.status_code}'
            return DisbursementResult(success=False, reason=str(reason))

        if payload.get('status') == 'failed':
            return DisbursementResult(
                success=False,
                reason=str(payload.get('reason') or 'Rejected by payment provider'),
                payment_id=payload.get('id'),
            )

        payment_id = payload.get('id')
        if not isinstance(payment_id, str) or not payment_id:
            return DisbursementResult(success=False, reason='Payment provider did not return a payment id')
        return DisbursementResult(success=True, payment_id=payment_id)


class SandboxPaymentProvider:
    """Development provider: approves everything and remembers keys it has seen."""

    def __init__(self) -> None:
        self._results: dict[str, DisbursementResult] = {}

    async def disburse(
        self,
        idempotency_key: str,
        destination: str | None,
        amount: int,
    ) -> DisbursementResult:
        if idempotency_key in self._results:
            return self._results[idempotency_key]

        result = DisbursementResult(success=True, payment_id=f'sandbox_{idempotency_key}')
        self._results[idempotency_key] = result
        logger.info(f'[sandbox] Disbursed {amount} to {destination or "<no destination>"} (key={idempotency_key})')
        return result


@lru_cache
def get_payment_provider() -> PaymentProvider:
    """Process-wide provider selected by PAYMENT_PROVIDER."""
    name = settings.payment_provider.strip().lower()
    if name == 'http':
        return HttpPaymentProvider()
    if name == 'sandbox':
        return SandboxPaymentProvider()
    raise ValueError(f'Unknown payment provider {settings.payment_provider!r}')
