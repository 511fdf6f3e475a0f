"""Tests for the request validator.

Tests cover:
- Required fields and their error messages
- URL syntax (scheme, host)
- Method normalization and token checks
- Timeout parsing and fallback
- Header and auth shapes
- Totality over arbitrary input
"""

from __future__ import annotations

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from RequestRelay.errors import ErrorCode, InputError
from RequestRelay.proxy.types import AuthSpec
from RequestRelay.proxy.validation import MAX_TIMEOUT_MS, parse_timeout_ms, validate_request


class TestRequiredFields:
    """url and method are mandatory."""

    def test_missing_url(self):
        with pytest.raises(InputError, match="URL is required") as info:
            validate_request({"method": "GET"})
        assert info.value.http_status == 400
        assert info.value.code is ErrorCode.E_INPUT

    def test_empty_url(self):
        with pytest.raises(InputError, match="URL is required"):
            validate_request({"url": "", "method": "GET"})

    def test_missing_method(self):
        with pytest.raises(InputError, match="Method is required"):
            validate_request({"url": "https://example.com"})

    def test_url_checked_before_method(self):
        with pytest.raises(InputError, match="URL is required"):
            validate_request({})

    @pytest.mark.parametrize("raw", [None, [], "https://example.com", 42])
    def test_non_mapping_payload(self, raw):
        with pytest.raises(InputError):
            validate_request(raw)


class TestUrl:
    @pytest.mark.parametrize(
        "url",
        ["not-a-url", "example.com/path", "/relative", "ftp://example.com/file", "https://", "http:///x"],
    )
    def test_rejects_invalid_urls(self, url):
        with pytest.raises(InputError, match="Invalid URL format"):
            validate_request({"url": url, "method": "GET"})

    @pytest.mark.parametrize(
        "url",
        ["http://example.com", "https://api.example.com:8443/v1?q=1", "http://[::1]:8080/", "https://10.0.0.5/"],
    )
    def test_accepts_absolute_http_urls(self, url):
        spec = validate_request({"url": url, "method": "GET"})
        assert spec.url == url

    def test_strips_surrounding_whitespace(self):
        spec = validate_request({"url": "  https://example.com/a  ", "method": "get"})
        assert spec.url == "https://example.com/a"

    def test_hostname_of_ipv6_literal_has_no_brackets(self):
        spec = validate_request({"url": "http://[::1]:8080/", "method": "GET"})
        assert spec.hostname == "::1"


class TestMethod:
    def test_upper_cases(self):
        assert validate_request({"url": "https://example.com", "method": "patch"}).method == "PATCH"

    def test_accepts_extension_methods(self):
        assert validate_request({"url": "https://example.com", "method": "PROPFIND"}).method == "PROPFIND"

    @pytest.mark.parametrize("method", ["GE T", "G\rET", "PO(ST", "ÜBER"])
    def test_rejects_non_token_methods(self, method):
        with pytest.raises(InputError, match="Invalid HTTP method"):
            validate_request({"url": "https://example.com", "method": method})


class TestTimeout:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (5000, 5000),
            (2500.9, 2500),
            ("1500", 1500),
            (" 750 ", 750),
            (None, 30_000),
            ("soon", 30_000),
            (0, 30_000),
            (-10, 30_000),
            (float("nan"), 30_000),
            ("inf", 30_000),
            (True, 30_000),
            ([100], 30_000),
            (MAX_TIMEOUT_MS + 1, MAX_TIMEOUT_MS),
            (10**400, MAX_TIMEOUT_MS),
            (1e300, MAX_TIMEOUT_MS),
            ("1e300", MAX_TIMEOUT_MS),
        ],
    )
    def test_parse_timeout_ms(self, value, expected):
        assert parse_timeout_ms(value) == expected

    def test_timeout_ms_key_preferred_over_timeout(self):
        spec = validate_request(
            {"url": "https://example.com", "method": "GET", "timeoutMs": 1000, "timeout": 2000}
        )
        assert spec.timeout_ms == 1000

    def test_falls_back_to_timeout_key(self):
        spec = validate_request({"url": "https://example.com", "method": "GET", "timeout": "2000"})
        assert spec.timeout_ms == 2000

    def test_configured_default_used(self):
        spec = validate_request({"url": "https://example.com", "method": "GET"}, default_timeout_ms=1234)
        assert spec.timeout_ms == 1234


class TestHeadersAndAuth:
    def test_headers_default_empty(self):
        assert validate_request({"url": "https://example.com", "method": "GET"}).headers == {}

    def test_header_values_stringified_and_none_dropped(self):
        spec = validate_request(
            {
                "url": "https://example.com",
                "method": "GET",
                "headers": {"X-Count": 3, "X-Skip": None, "Accept": "text/plain"},
            }
        )
        assert spec.headers == {"X-Count": "3", "Accept": "text/plain"}

    @pytest.mark.parametrize(
        "value",
        ["caf\u00e9", "a\r\nX-Injected: 1", "line\nbreak", "nul\x00byte"],
    )
    def test_rejects_unsendable_header_values(self, value):
        with pytest.raises(InputError, match="only printable ASCII") as info:
            validate_request({"url": "https://example.com", "method": "GET", "headers": {"X-Name": value}})
        assert info.value.http_status == 400

    @pytest.mark.parametrize("name", ["X Name", "X-Name:", "caf\u00e9", "X\nY"])
    def test_rejects_non_token_header_names(self, name):
        with pytest.raises(InputError, match="Invalid header name"):
            validate_request({"url": "https://example.com", "method": "GET", "headers": {name: "1"}})

    def test_header_value_may_contain_tab_and_spaces(self):
        spec = validate_request(
            {"url": "https://example.com", "method": "GET", "headers": {" X-Pad ": "a\tb c"}}
        )
        assert spec.headers == {"X-Pad": "a\tb c"}

    def test_headers_must_be_mapping(self):
        with pytest.raises(InputError, match="Headers must be an object"):
            validate_request({"url": "https://example.com", "method": "GET", "headers": ["X-A: 1"]})

    def test_auth_parsed(self):
        spec = validate_request(
            {"url": "https://example.com", "method": "GET", "auth": {"type": "bearer", "token": "t0k"}}
        )
        assert spec.auth == AuthSpec(type="bearer", token="t0k")

    def test_auth_empty_token_becomes_none(self):
        spec = validate_request(
            {"url": "https://example.com", "method": "GET", "auth": {"type": "bearer", "token": ""}}
        )
        assert spec.auth is not None
        assert spec.auth.token is None

    def test_auth_must_be_mapping(self):
        with pytest.raises(InputError, match="Auth must be an object"):
            validate_request({"url": "https://example.com", "method": "GET", "auth": "Bearer x"})

    def test_body_passed_through_untouched(self):
        body = {"nested": [1, 2, {"a": None}]}
        spec = validate_request({"url": "https://example.com", "method": "POST", "body": body})
        assert spec.body is body


_url_like = st.one_of(
    st.text(max_size=80),
    st.from_regex(r"https?://[a-z0-9.\-\[\]:]{0,30}(:[0-9]{1,6})?(/[ -~]{0,30})?", fullmatch=True),
)


@settings(max_examples=300, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(
    url=st.one_of(st.none(), st.integers(), _url_like),
    method=st.one_of(st.none(), st.text(max_size=12), st.sampled_from(["GET", "post", "Delete"])),
    timeout=st.one_of(st.none(), st.integers(), st.floats(allow_nan=True), st.text(max_size=8)),
)
def test_validator_is_total(url, method, timeout):
    """Any payload yields a spec or an InputError, never another exception."""
    try:
        spec = validate_request({"url": url, "method": method, "timeoutMs": timeout})
    except InputError as exc:
        assert exc.http_status == 400
    else:
        assert 0 < spec.timeout_ms <= MAX_TIMEOUT_MS
        assert spec.method == spec.method.upper()
        assert spec.url.lower().startswith(("http://", "https://"))
