"""Tests for upstream dispatch and transport failure classification.

Tests cover:
- Request passthrough (method, headers, body) and no redirect following
- Response ceiling via Content-Length and via streamed bytes
- Hard deadline enforcement
- Mapping of network faults to status and code
"""

from __future__ import annotations

import socket
import time

import httpx
import pytest

from RequestRelay.errors import ErrorCode, ResponseTooLarge, TransportError
from RequestRelay.proxy.client import create_http_client
from RequestRelay.proxy.dispatcher import (
    CONNECTION_REFUSED_MESSAGE,
    DNS_FAILURE_MESSAGE,
    NO_RESPONSE_MESSAGE,
    TIMEOUT_MESSAGE,
    Dispatcher,
    classify_transport_error,
)
from RequestRelay.proxy.types import BuiltRequest, Success, UpstreamError
from RequestRelay.settings import ProxySettings
from tests.fixtures.http_mocking import MockResponseBuilder, RaisingTransport, connect_error, header_map


def _built(**overrides) -> BuiltRequest:
    fields = {
        "method": "GET",
        "url": "https://api.example.com/items",
        "headers": {"User-Agent": "RequestRelay/test"},
        "content": None,
        "timeout_ms": 2_000,
    }
    fields.update(overrides)
    return BuiltRequest(**fields)


@pytest.fixture
def proxy_settings() -> ProxySettings:
    return ProxySettings(max_response_bytes=1024)


class TestClassification:
    """classify_transport_error maps exception chains, not messages alone."""

    def test_refused(self):
        failure = classify_transport_error(connect_error(ConnectionRefusedError(111, "Connection refused")))
        assert (failure.http_status, failure.code) == (503, ErrorCode.E_CONN_REFUSED)
        assert failure.message == CONNECTION_REFUSED_MESSAGE

    def test_dns(self):
        failure = classify_transport_error(connect_error(socket.gaierror(-2, "Name or service not known")))
        assert (failure.http_status, failure.code) == (404, ErrorCode.E_DNS)
        assert failure.message == DNS_FAILURE_MESSAGE

    def test_dns_detected_from_message_when_cause_lost(self):
        failure = classify_transport_error(httpx.ConnectError("[Errno -3] Temporary failure in name resolution"))
        assert failure.code is ErrorCode.E_DNS

    def test_refused_detected_from_message_when_cause_lost(self):
        failure = classify_transport_error(httpx.ConnectError("[Errno 111] Connection refused"))
        assert failure.code is ErrorCode.E_CONN_REFUSED

    @pytest.mark.parametrize(
        "exc",
        [httpx.ConnectTimeout("slow"), httpx.ReadTimeout("slow"), httpx.PoolTimeout("busy"), TimeoutError()],
    )
    def test_timeouts(self, exc):
        failure = classify_transport_error(exc)
        assert (failure.http_status, failure.code) == (408, ErrorCode.E_TIMEOUT)
        assert failure.message == TIMEOUT_MESSAGE

    @pytest.mark.parametrize(
        "exc",
        [
            httpx.RemoteProtocolError("Server disconnected without sending a response."),
            httpx.ReadError("connection reset"),
            httpx.ConnectError("SSL: CERTIFICATE_VERIFY_FAILED"),
            ConnectionResetError(104, "Connection reset by peer"),
        ],
    )
    def test_no_response(self, exc):
        failure = classify_transport_error(exc)
        assert (failure.http_status, failure.code) == (502, ErrorCode.E_NO_RESPONSE)
        assert failure.message == NO_RESPONSE_MESSAGE

    @pytest.mark.parametrize("exc", [httpx.UnsupportedProtocol("gopher"), httpx.LocalProtocolError("bad header")])
    def test_local_faults_are_internal(self, exc):
        failure = classify_transport_error(exc)
        assert (failure.http_status, failure.code) == (500, ErrorCode.E_INTERNAL)

    def test_transport_errors_pass_through(self):
        original = ResponseTooLarge(10, observed=11)
        assert classify_transport_error(original) is original
        assert (original.http_status, original.code) == (502, ErrorCode.E_RESPONSE_TOO_LARGE)


@pytest.mark.anyio
class TestDispatch:
    async def test_request_forwarded_verbatim(self, stub_upstream, proxy_settings):
        stub_upstream.respond(MockResponseBuilder(201).with_json({"id": 9}))
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            built = _built(
                method="POST",
                headers={"User-Agent": "RequestRelay/test", "X-Trace": "t-1", "Content-Type": "text/plain"},
                content=b"hello",
            )
            result = await Dispatcher(client, proxy_settings).dispatch(built, started=time.perf_counter())

        assert isinstance(result, Success)
        assert result.status == 201
        assert result.data == {"id": 9}
        sent = stub_upstream.last
        assert sent.method == "POST"
        assert str(sent.url) == built.url
        assert header_map(sent)["x-trace"] == "t-1"
        assert header_map(sent)["user-agent"] == "RequestRelay/test"
        assert stub_upstream.bodies == [b"hello"]

    async def test_redirect_not_followed(self, stub_upstream, proxy_settings):
        stub_upstream.respond(
            MockResponseBuilder(302).with_header("location", "https://api.example.com/moved")
        )
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            result = await Dispatcher(client, proxy_settings).dispatch(_built(), started=time.perf_counter())

        assert isinstance(result, Success)
        assert result.status == 302
        assert result.headers["location"] == "https://api.example.com/moved"
        assert result.redirected is False
        assert len(stub_upstream.requests) == 1

    async def test_upstream_error_status_is_data(self, stub_upstream, proxy_settings):
        stub_upstream.respond(MockResponseBuilder(404).with_json({"error": "Not found"}))
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            result = await Dispatcher(client, proxy_settings).dispatch(_built(), started=time.perf_counter())

        assert isinstance(result, UpstreamError)
        assert result.data == {"error": "Not found"}
        assert result.status_text == "Not Found"

    async def test_declared_length_over_ceiling(self, stub_upstream, proxy_settings):
        stub_upstream.respond(MockResponseBuilder(200).with_content(b"x" * 2048))
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            with pytest.raises(ResponseTooLarge) as info:
                await Dispatcher(client, proxy_settings).dispatch(_built(), started=time.perf_counter())
        assert info.value.observed == 2048
        assert info.value.http_status == 502

    async def test_streamed_bytes_over_ceiling(self, stub_upstream, proxy_settings):
        stub_upstream.respond(MockResponseBuilder(200).streamed(b"a" * 600, b"b" * 600, b"c" * 600))
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            with pytest.raises(ResponseTooLarge):
                await Dispatcher(client, proxy_settings).dispatch(_built(), started=time.perf_counter())

    async def test_payload_at_ceiling_accepted(self, stub_upstream, proxy_settings):
        stub_upstream.respond(MockResponseBuilder(200).streamed(b"a" * 512, b"b" * 512))
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            result = await Dispatcher(client, proxy_settings).dispatch(_built(), started=time.perf_counter())
        assert result.size_bytes == 1024

    async def test_deadline_enforced(self, stub_upstream, proxy_settings):
        stub_upstream.stall(5.0)
        async with create_http_client(proxy_settings, transport=stub_upstream.transport) as client:
            started = time.perf_counter()
            with pytest.raises(TransportError) as info:
                await Dispatcher(client, proxy_settings).dispatch(_built(timeout_ms=100), started=started)
            waited = time.perf_counter() - started

        assert info.value.http_status == 408
        assert info.value.code is ErrorCode.E_TIMEOUT
        assert waited < 1.0

    async def test_transport_fault_classified(self, proxy_settings):
        transport = RaisingTransport(connect_error(ConnectionRefusedError(111, "Connection refused")))
        async with create_http_client(proxy_settings, transport=transport) as client:
            with pytest.raises(TransportError) as info:
                await Dispatcher(client, proxy_settings).dispatch(_built(), started=time.perf_counter())
        assert info.value.http_status == 503
        assert transport.calls == 1
