"""Tests for resilient_call and the transient error predicates."""

import urllib.error
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
import requests

from faturabot.infra.resilience import (
    GatewayError,
    GatewayResult,
    is_transient_db_error,
    is_transient_http_error,
    resilient_call,
)
from tests.helpers import LogRecorder


class TestResilientCall:
    def test_success_first_try(self, sleeps):
        result = resilient_call(lambda: {"ok": 1}, operation="test", sleep=sleeps)

        assert result == GatewayResult.ok({"ok": 1})
        assert sleeps.calls == []

    def test_always_transient_is_attempted_exactly_three_times(self, sleeps):
        fn = MagicMock(side_effect=requests.ConnectionError("reset"))

        result = resilient_call(fn, operation="test", sleep=sleeps)

        assert fn.call_count == 3
        assert sleeps.calls == [1.0, 2.0]
        assert result.success is False
        assert result.unavailable is True
        assert result.error == "ConnectionError"

    def test_attempts_and_delay_are_configurable(self, sleeps):
        fn = MagicMock(side_effect=TimeoutError())

        resilient_call(fn, operation="test", attempts=4, delay=0.5, sleep=sleeps)

        assert fn.call_count == 4
        assert sleeps.calls == [0.5, 1.0, 1.5]

    def test_non_transient_fails_immediately(self, sleeps):
        fn = MagicMock(side_effect=GatewayError("http_400", status_code=400))

        result = resilient_call(fn, operation="test", sleep=sleeps)

        assert fn.call_count == 1
        assert sleeps.calls == []
        assert result.error == "http_400"
        assert result.status_code == 400
        assert result.unavailable is False

    def test_recovers_after_transient_failure(self, sleeps):
        fn = MagicMock(side_effect=[GatewayError("http_503", status_code=503), "data"])

        result = resilient_call(fn, operation="test", sleep=sleeps)

        assert result.success is True
        assert result.data == "data"
        assert sleeps.calls == [1.0]

    def test_unexpected_exception_never_escapes(self, sleeps):
        result = resilient_call(lambda: 1 / 0, operation="test", sleep=sleeps)

        assert result.success is False
        assert result.error == "ZeroDivisionError"

    def test_custom_predicate(self, sleeps):
        fn = MagicMock(side_effect=ValueError("flaky"))

        resilient_call(fn, operation="test", is_retryable=lambda e: True, sleep=sleeps)

        assert fn.call_count == 3

    def test_logs_attempt_ordinals_and_redacted_request(self, sleeps):
        recorder = LogRecorder()
        fn = MagicMock(side_effect=requests.Timeout())

        with patch("faturabot.infra.resilience.logger", recorder):
            resilient_call(
                fn,
                operation="erp.lookup_by_phone",
                sleep=sleeps,
                describe=lambda: "[GET] https://erp.test/x?numeroTelefone=11987654321&token=abc",
            )

        warnings = [c for c in recorder.calls if c[0] == "warning"]
        assert [w[2]["extra"]["extra_fields"]["attempt"] for w in warnings] == ["1", "2"]
        final = recorder.extra_fields("gateway call failed")
        assert final["attempt"] == "3"
        assert "11987654321" not in final["request"]
        assert "abc" not in final["request"]
        assert "[GET] https://erp.test/x" in final["request"]


class TestTransientHttpError:
    @pytest.mark.parametrize(
        "exc",
        [
            requests.ConnectionError(),
            requests.Timeout(),
            ConnectionResetError(),
            ConnectionRefusedError(),
            TimeoutError(),
            GatewayError("http_502", status_code=502),
            GatewayError("invalid_json", retryable=True),
            urllib.error.URLError("down"),
        ],
    )
    def test_transient(self, exc):
        assert is_transient_http_error(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            GatewayError("http_404", status_code=404),
            GatewayError("not_pdf"),
            ValueError("bad"),
        ],
    )
    def test_not_transient(self, exc):
        assert not is_transient_http_error(exc)

    def test_urllib_http_error_by_status(self):
        server = urllib.error.HTTPError("http://x", 503, "unavailable", {}, None)
        client = urllib.error.HTTPError("http://x", 400, "bad", {}, None)

        assert is_transient_http_error(server)
        assert not is_transient_http_error(client)


class TestTransientDbError:
    def test_operational_error(self):
        assert is_transient_db_error(psycopg2.OperationalError("server closed the connection"))

    def test_interface_error(self):
        assert is_transient_db_error(psycopg2.InterfaceError("connection already closed"))

    def test_reprepare_message(self):
        exc = psycopg2.errors.FeatureNotSupported("cached plan must not change result type")
        assert is_transient_db_error(exc)

    def test_integrity_error_is_not_transient(self):
        assert not is_transient_db_error(psycopg2.IntegrityError("duplicate key"))
