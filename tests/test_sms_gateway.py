"""
test_sms_gateway.py — SENS request signing, delivery results and retry.

Run with:
    pytest tests/test_sms_gateway.py -v
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json

import httpx
import pytest

from welfare_notify.alerts.channels.sms_gateway import SmsGateway, make_signature


def _naver(handler, fake_sleep, **kwargs) -> SmsGateway:
    return SmsGateway(
        "naver",
        access_key="AK",
        secret_key="SK",
        service_id="welfare-svc",
        from_number="042-611-2114",
        retry_delay=5.0,
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
        **kwargs,
    )


def _replay(*responses):
    """Handler that answers with the given (status, body) pairs in order."""
    queue = list(responses)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        status, body = queue.pop(0)
        return httpx.Response(status, json=body)

    handler.requests = requests
    return handler


class TestSignature:

    def test_matches_hmac_sha256_of_method_uri_timestamp_key(self):
        uri = "/sms/v2/services/svc/messages"
        expected = base64.b64encode(hmac.new(
            b"SK", f"POST {uri}\n1700000000000\nAK".encode(), hashlib.sha256,
        ).digest()).decode()
        assert make_signature("SK", "AK", "POST", uri, "1700000000000") == expected

    def test_depends_on_full_uri(self):
        a = make_signature("SK", "AK", "POST", "/sms/v2/services/a/messages", "1")
        b = make_signature("SK", "AK", "POST", "/sms/v2/services/b/messages", "1")
        assert a != b


class TestNaverSend:

    def test_request_shape_and_success(self, fake_sleep):
        handler = _replay((202, {"requestId": "REQ-1", "statusCode": "202"}))
        gateway = _naver(handler, fake_sleep)

        result = asyncio.run(gateway.send_one("010-1234-5678", "안녕하세요"))

        assert result.succeeded
        assert result.request_id == "REQ-1"
        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/sms/v2/services/welfare-svc/messages"
        assert request.headers["x-ncp-iam-access-key"] == "AK"
        assert "x-ncp-apigw-signature-v2" in request.headers
        body = json.loads(request.content)
        assert body["type"] == "SMS"
        assert body["from"] == "0426112114"
        assert body["messages"] == [{"to": "01012345678", "content": "안녕하세요"}]

    def test_server_error_retried_until_success(self, fake_sleep):
        handler = _replay(
            (503, {"errorMessage": "busy"}),
            (500, {}),
            (202, {"requestId": "REQ-2"}),
        )
        gateway = _naver(handler, fake_sleep)

        result = asyncio.run(gateway.send_with_retry("01012345678", "긴급"))

        assert result.succeeded
        assert result.retry_count == 2
        assert fake_sleep.calls == [5.0, 5.0]

    def test_client_error_not_retried(self, fake_sleep):
        handler = _replay((400, {"errorMessage": "invalid recipient"}))
        gateway = _naver(handler, fake_sleep)

        result = asyncio.run(gateway.send_with_retry("01012345678", "안녕하세요"))

        assert not result.succeeded
        assert result.error == "invalid recipient"
        assert result.status_code == 400
        assert result.retry_count == 0
        assert len(handler.requests) == 1

    def test_retries_are_bounded(self, fake_sleep):
        handler = _replay(*[(503, {})] * 4)
        gateway = _naver(handler, fake_sleep, max_retries=3)

        result = asyncio.run(gateway.send_with_retry("01012345678", "안녕하세요"))

        assert not result.succeeded
        assert result.retry_count == 3
        assert len(handler.requests) == 4

    def test_timeout_is_retryable(self, fake_sleep):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        result = asyncio.run(_naver(handler, fake_sleep).send_one("01012345678", "안녕하세요"))

        assert not result.succeeded
        assert result.retryable
        assert result.error.startswith("timeout")

    def test_missing_phone_number(self, fake_sleep):
        gateway = _naver(_replay(), fake_sleep)
        result = asyncio.run(gateway.send_one("", "안녕하세요"))
        assert not result.succeeded
        assert not result.retryable

    def test_check_connection_auth_failure(self, fake_sleep):
        gateway = _naver(_replay((401, {"errorMessage": "unauthorized"})), fake_sleep)
        assert asyncio.run(gateway.check_connection()) is False


class TestSimulation:

    def test_simulation_always_succeeds_without_http(self):
        gateway = SmsGateway("simulation")
        result = asyncio.run(gateway.send_with_retry("010-9876-5432", "테스트"))
        assert result.succeeded
        assert result.request_id == "SIM-5432"
        assert asyncio.run(gateway.check_connection()) is True

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            SmsGateway("carrier-pigeon")
