"""
sms_gateway.py — SMS delivery via Naver Cloud SENS, with a simulation mode.

Delivery mechanism:
    • Primary: HTTP API to the SENS v2 messages endpoint
    • Payload: type SMS, contentType COMM, countryCode 82, one message per call
    • No carrier delivery receipt; a 2xx answer counts as "sent"

═══════════════════════════════════════════════════════════════════════════
SENS REQUEST SIGNING
═══════════════════════════════════════════════════════════════════════════

    POST https://sens.apigw.ntruss.com/sms/v2/services/{serviceId}/messages

    string_to_sign = "POST {uri}\\n{timestamp_ms}\\n{access_key}"
    signature      = base64(HMAC-SHA256(secret_key, string_to_sign))

    Headers:
        x-ncp-apigw-timestamp     {timestamp_ms}
        x-ncp-iam-access-key      {access_key}
        x-ncp-apigw-signature-v2  {signature}

═══════════════════════════════════════════════════════════════════════════
RETRY
═══════════════════════════════════════════════════════════════════════════

    Retryable:  HTTP 408, 429, 500, 502, 503, 504, timeouts, connection errors
    Terminal:   any other 4xx (bad number, auth failure, …)

    Up to SMS_MAX_RETRIES extra attempts with a fixed SMS_RETRY_DELAY pause.
    Sending the same text twice is acceptable; losing it is not.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from welfare_notify.alerts.models import normalize_phone
from welfare_notify.core.config import settings

logger = logging.getLogger(__name__)

SENS_BASE_URL = "https://sens.apigw.ntruss.com"
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class SendResult:
    succeeded: bool
    error: Optional[str] = None
    status_code: Optional[int] = None
    request_id: Optional[str] = None
    retry_count: int = 0
    retryable: bool = False

    def with_retry_count(self, retry_count: int) -> "SendResult":
        return SendResult(
            succeeded=self.succeeded,
            error=self.error,
            status_code=self.status_code,
            request_id=self.request_id,
            retry_count=retry_count,
            retryable=self.retryable,
        )


def make_signature(
    secret_key: str,
    access_key: str,
    method: str,
    uri: str,
    timestamp: str,
) -> str:
    message = f"{method} {uri}\n{timestamp}\n{access_key}"
    digest = hmac.new(
        secret_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("utf-8")


class SmsGateway:
    """
    Usage:
        gateway = SmsGateway()                 # provider from SMS_PROVIDER
        result = await gateway.send_with_retry("01012345678", "안녕하세요")
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        *,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        service_id: Optional[str] = None,
        from_number: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.provider = (provider or settings.SMS_PROVIDER).lower()
        self.access_key = access_key or settings.NAVER_SMS_ACCESS_KEY or ""
        self.secret_key = secret_key or settings.NAVER_SMS_SECRET_KEY or ""
        self.service_id = service_id or settings.NAVER_SMS_SERVICE_ID or ""
        self.from_number = normalize_phone(from_number or settings.NAVER_SMS_FROM_NUMBER or "")
        self.max_retries = max_retries if max_retries is not None else settings.SMS_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.SMS_RETRY_DELAY
        self.timeout = timeout if timeout is not None else settings.EXTERNAL_API_TIMEOUT
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._http_client: Optional[httpx.AsyncClient] = None

        if self.provider not in ("simulation", "naver"):
            raise ValueError(f"Unknown SMS provider: {self.provider}")
        if self.provider == "naver" and not all(
            (self.access_key, self.secret_key, self.service_id, self.from_number)
        ):
            logger.warning("Naver SENS credentials incomplete; sends will fail")

    @property
    def messages_uri(self) -> str:
        return f"/sms/v2/services/{self.service_id}/messages"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=SENS_BASE_URL,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def _auth_headers(self, method: str, uri: str) -> Dict[str, str]:
        timestamp = str(int(time.time() * 1000))
        return {
            "Content-Type": "application/json; charset=utf-8",
            "x-ncp-apigw-timestamp": timestamp,
            "x-ncp-iam-access-key": self.access_key,
            "x-ncp-apigw-signature-v2": make_signature(
                self.secret_key, self.access_key, method, uri, timestamp,
            ),
        }

    # ── Single attempt ──

    async def send_one(self, phone_number: str, text: str) -> SendResult:
        """One delivery attempt. Never raises for delivery problems."""
        to = normalize_phone(phone_number)
        if not to:
            return SendResult(succeeded=False, error="No phone number on file")

        if self.provider == "simulation":
            logger.info(
                "[SMS] → %s: %d chars → '%s'",
                to, len(text), text[:40] + ("..." if len(text) > 40 else ""),
            )
            return SendResult(succeeded=True, status_code=202, request_id=f"SIM-{to[-4:]}")

        return await self._send_naver(to, text)

    async def _send_naver(self, to: str, text: str) -> SendResult:
        body = {
            "type": "SMS",
            "contentType": "COMM",
            "countryCode": "82",
            "from": self.from_number,
            "content": text,
            "messages": [{"to": to, "content": text}],
        }
        uri = self.messages_uri
        client = await self._get_client()
        try:
            response = await client.post(uri, json=body, headers=self._auth_headers("POST", uri))
        except httpx.TimeoutException as e:
            logger.warning("[SMS/Naver] Timeout sending to %s: %s", to, e)
            return SendResult(succeeded=False, error=f"timeout: {e}", retryable=True)
        except httpx.HTTPError as e:
            logger.warning("[SMS/Naver] Transport error sending to %s: %s", to, e)
            return SendResult(succeeded=False, error=str(e), retryable=True)

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = {}

        if response.is_success:
            return SendResult(
                succeeded=True,
                status_code=response.status_code,
                request_id=data.get("requestId"),
            )

        error = data.get("errorMessage")
        logger.error("[SMS/Naver] HTTP %d for %s: %s", response.status_code, to, error)
        return SendResult(
            succeeded=False,
            error=error or f"HTTP {response.status_code}",
            status_code=response.status_code,
            retryable=response.status_code in RETRYABLE_STATUS_CODES,
        )

    # ── With retry ──

    async def send_with_retry(self, phone_number: str, text: str) -> SendResult:
        result = await self.send_one(phone_number, text)
        retries = 0
        while not result.succeeded and result.retryable and retries < self.max_retries:
            retries += 1
            logger.info(
                "[SMS] Retry %d/%d for %s in %.1fs",
                retries, self.max_retries, phone_number, self.retry_delay,
            )
            await self._sleep(self.retry_delay)
            result = await self.send_one(phone_number, text)
        return result.with_retry_count(retries)

    async def check_connection(self) -> bool:
        """Credentials are accepted (anything but 401/403 counts as reachable)."""
        if self.provider == "simulation":
            return True
        client = await self._get_client()
        uri = self.messages_uri
        body = {
            "type": "SMS",
            "contentType": "COMM",
            "countryCode": "82",
            "from": self.from_number,
            "content": "test",
            "messages": [],
        }
        try:
            response = await client.post(uri, json=body, headers=self._auth_headers("POST", uri))
        except httpx.HTTPError as e:
            logger.error("SMS gateway unreachable: %s", e)
            return False
        if response.status_code in (401, 403):
            logger.error("SMS gateway authentication failed")
            return False
        return True
