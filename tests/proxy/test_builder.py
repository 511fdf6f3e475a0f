"""Tests for the outbound request builder.

Tests cover:
- Stripping of forbidden headers in any case
- User-Agent injection
- Bearer auth injection and override
- Body attachment rules per method
- Body encoding and the request size ceiling
"""

from __future__ import annotations

import json

import pytest

from RequestRelay.errors import ErrorCode, InputError
from RequestRelay.proxy.builder import FORBIDDEN_HEADERS, build_request, encode_body, sanitize_headers
from RequestRelay.proxy.types import AuthSpec, OutboundRequestSpec
from RequestRelay.settings import DEFAULT_USER_AGENT, ProxySettings

SETTINGS = ProxySettings()


def _spec(**overrides) -> OutboundRequestSpec:
    fields = {"url": "https://api.example.com/items", "method": "GET"}
    fields.update(overrides)
    return OutboundRequestSpec(**fields)


def _lower(headers):
    return {name.lower(): value for name, value in headers.items()}


class TestHeaderSanitization:
    def test_forbidden_headers_stripped_case_insensitively(self):
        caller = {
            "Host": "evil.internal",
            "ORIGIN": "https://attacker",
            "referer": "https://attacker/page",
            "User-Agent": "spoofed",
            "Accept-Encoding": "br",
            "Connection": "upgrade",
            "Content-Length": "999",
            "X-Trace": "abc",
        }
        built = build_request(_spec(headers=caller), SETTINGS)
        names = {name.lower() for name in built.headers}
        assert names.isdisjoint(FORBIDDEN_HEADERS - {"user-agent"})
        assert built.headers["X-Trace"] == "abc"

    def test_user_agent_replaced_with_relay_identity(self):
        built = build_request(_spec(headers={"user-agent": "curl/8"}), SETTINGS)
        assert _lower(built.headers)["user-agent"] == DEFAULT_USER_AGENT

    def test_user_agent_configurable(self):
        built = build_request(_spec(), ProxySettings(user_agent="Relay-Test/1"))
        assert built.headers["User-Agent"] == "Relay-Test/1"

    def test_sanitize_does_not_mutate_input(self):
        original = {"Host": "x", "Accept": "text/plain"}
        assert sanitize_headers(original) == {"Accept": "text/plain"}
        assert original == {"Host": "x", "Accept": "text/plain"}


class TestAuth:
    def test_bearer_injected(self):
        built = build_request(_spec(auth=AuthSpec(type="bearer", token="s3cret")), SETTINGS)
        assert built.headers["Authorization"] == "Bearer s3cret"

    def test_bearer_overrides_caller_authorization_in_any_case(self):
        built = build_request(
            _spec(headers={"aUtHoRiZaTiOn": "Basic Zm9v"}, auth=AuthSpec(type="Bearer", token="t")),
            SETTINGS,
        )
        auth_headers = [value for name, value in built.headers.items() if name.lower() == "authorization"]
        assert auth_headers == ["Bearer t"]

    @pytest.mark.parametrize("auth", [AuthSpec(type="basic", token="t"), AuthSpec(type="bearer", token=None)])
    def test_non_bearer_or_tokenless_auth_ignored(self, auth):
        built = build_request(_spec(headers={"Authorization": "Basic Zm9v"}, auth=auth), SETTINGS)
        assert built.headers["Authorization"] == "Basic Zm9v"


class TestBody:
    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_body_attached_for_body_methods(self, method):
        built = build_request(_spec(method=method, body="payload"), SETTINGS)
        assert built.content == b"payload"

    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS"])
    def test_body_dropped_for_other_methods(self, method):
        built = build_request(_spec(method=method, body={"ignored": True}), SETTINGS)
        assert built.content is None
        assert "Content-Type" not in built.headers

    @pytest.mark.parametrize("body", [None, ""])
    def test_empty_body_means_no_body(self, body):
        assert build_request(_spec(method="POST", body=body), SETTINGS).content is None

    def test_structured_body_serialized_as_json(self):
        built = build_request(_spec(method="POST", body={"a": [1, 2], "b": "ü"}), SETTINGS)
        assert json.loads(built.content.decode("utf-8")) == {"a": [1, 2], "b": "ü"}
        assert built.headers["Content-Type"] == "application/json"

    def test_caller_content_type_kept_for_json_body(self):
        built = build_request(
            _spec(method="PUT", headers={"content-type": "application/vnd.api+json"}, body={"x": 1}),
            SETTINGS,
        )
        assert built.headers == {
            "content-type": "application/vnd.api+json",
            "User-Agent": DEFAULT_USER_AGENT,
        }

    def test_string_body_sent_verbatim(self):
        built = build_request(_spec(method="POST", body='{"raw": true}'), SETTINGS)
        assert built.content == b'{"raw": true}'
        assert "Content-Type" not in built.headers

    def test_unserializable_body_rejected(self):
        with pytest.raises(InputError, match="not JSON-serializable"):
            encode_body({"when": object()}, {})

    def test_body_over_ceiling_is_413(self):
        settings = ProxySettings(max_request_bytes=16)
        with pytest.raises(InputError) as info:
            build_request(_spec(method="POST", body="x" * 17), settings)
        assert info.value.http_status == 413
        assert info.value.code is ErrorCode.E_BODY_TOO_LARGE

    def test_body_at_ceiling_allowed(self):
        settings = ProxySettings(max_request_bytes=16)
        assert build_request(_spec(method="POST", body="x" * 16), settings).content == b"x" * 16


def test_url_normalized_and_method_kept():
    built = build_request(_spec(url="https://api.example.com/a b", method="OPTIONS"), SETTINGS)
    assert built.url == "https://api.example.com/a%20b"
    assert built.method == "OPTIONS"
    assert built.timeout_ms == 30_000
