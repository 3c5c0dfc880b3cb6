"""
Delivery adapters used by the execution engine.

The engine only depends on the narrow contracts below. Real email and SMS
providers live outside this service; the logging senders stand in for them
when ``DELIVERY_DRY_RUN`` is on. Outbound webhooks are real HTTP calls made
with httpx.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class SmsEligibility:
    eligible: bool
    reason: Optional[str] = None


@dataclass
class SmsResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WebhookResult:
    success: bool
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None


class EmailSender(ABC):
    """Email delivery contract."""

    @abstractmethod
    async def send_review_request_with_template(self, customer) -> bool:
        ...

    @abstractmethod
    async def send_follow_up_email(self, customer, template_type: str) -> bool:
        ...

    @abstractmethod
    async def send_template_by_name(self, customer, template_name: str) -> bool:
        ...


class SmsSender(ABC):
    """SMS delivery contract. Consent and rate limits are the sender's concern."""

    @abstractmethod
    async def get_eligibility(self, customer) -> SmsEligibility:
        ...

    @abstractmethod
    async def send_review_request_sms(self, customer) -> SmsResult:
        ...

    @abstractmethod
    async def send_follow_up_sms(self, customer, follow_up_type: str) -> SmsResult:
        ...


class LoggingEmailSender(EmailSender):
    """Dry-run sender: records what would be sent and reports success when an address exists."""

    async def send_review_request_with_template(self, customer) -> bool:
        return self._send(customer, "review_request")

    async def send_follow_up_email(self, customer, template_type: str) -> bool:
        return self._send(customer, template_type)

    async def send_template_by_name(self, customer, template_name: str) -> bool:
        return self._send(customer, template_name)

    def _send(self, customer, template: str) -> bool:
        if not customer.email or not customer.email.strip():
            logger.info(f"[dry-run] No email address for customer {customer.id}, skipping '{template}'")
            return False
        logger.info(f"[dry-run] Email '{template}' to {customer.email} (customer {customer.id})")
        return True


class LoggingSmsSender(SmsSender):
    async def get_eligibility(self, customer) -> SmsEligibility:
        if not customer.phone or not customer.phone.strip():
            return SmsEligibility(eligible=False, reason="No phone number")
        if customer.sms_opt_out:
            return SmsEligibility(eligible=False, reason="Customer opted out of SMS")
        if not customer.sms_opt_in:
            return SmsEligibility(eligible=False, reason="Customer has not opted in to SMS")
        return SmsEligibility(eligible=True)

    async def send_review_request_sms(self, customer) -> SmsResult:
        logger.info(f"[dry-run] Review request SMS to {customer.phone} (customer {customer.id})")
        return SmsResult(success=True)

    async def send_follow_up_sms(self, customer, follow_up_type: str) -> SmsResult:
        logger.info(f"[dry-run] Follow-up SMS '{follow_up_type}' to {customer.phone} (customer {customer.id})")
        return SmsResult(success=True)


class WebhookCaller:
    """
    Makes outbound webhook calls with bounded retries.

    A 5xx response, a timeout or a connection error is retried with
    exponential backoff (``retry_delay * 2**(attempt - 1)``) up to ``max_retries``
    times. Any other response, an invalid URL or a payload that cannot be
    encoded as JSON is final. The caller never raises.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        connect_timeout: float = 5.0,
        read_timeout: float = 10.0,
        write_timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.sleep = sleep
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=connect_timeout, read=read_timeout, write=write_timeout, pool=connect_timeout
            ),
            follow_redirects=False,
        )

    @classmethod
    def from_settings(cls, settings, client: Optional[httpx.AsyncClient] = None) -> "WebhookCaller":
        return cls(
            client=client,
            max_retries=settings.WEBHOOK_MAX_RETRIES,
            retry_delay=settings.WEBHOOK_RETRY_DELAY_MS / 1000,
            connect_timeout=settings.WEBHOOK_CONNECT_TIMEOUT_MS / 1000,
            read_timeout=settings.WEBHOOK_READ_TIMEOUT_MS / 1000,
            write_timeout=settings.WEBHOOK_WRITE_TIMEOUT_MS / 1000,
        )

    async def call(
        self,
        url: str,
        method: str = "POST",
        headers: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> WebhookResult:
        method = method.upper()
        attempts = 0
        last_error = None
        status_code = None

        while True:
            attempts += 1
            try:
                response = await self.client.request(method, url, headers=headers, json=payload)
                status_code = response.status_code
                if response.is_success:
                    return WebhookResult(success=True, status_code=status_code, attempts=attempts)
                last_error = f"HTTP {status_code}"
                retryable = response.is_server_error
            except (httpx.InvalidURL, httpx.UnsupportedProtocol, TypeError, ValueError) as e:
                # malformed request, never retried
                status_code = None
                last_error = f"{type(e).__name__}: {str(e)}"
                retryable = False
            except httpx.TransportError as e:
                status_code = None
                last_error = f"{type(e).__name__}: {str(e) or 'transport error'}"
                retryable = True

            if not retryable or attempts > self.max_retries:
                break

            delay = self.retry_delay * (2 ** (attempts - 1))
            logger.warning(
                f"Webhook {method} {url} failed ({last_error}), retry {attempts}/{self.max_retries} in {delay:.2f}s"
            )
            await self.sleep(delay)

        return WebhookResult(success=False, status_code=status_code, attempts=attempts, error=last_error)

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()
