"""Tests for Evolution outbound messaging - verifies NO PII in logs."""

import json
import urllib.error
from unittest.mock import patch

from faturabot.infra.settings import EvolutionConfig
from faturabot.whatsapp.evolution_sender import EvolutionSender
from tests.helpers import CALLER, PDF_BASE64, LogRecorder

CONFIG = EvolutionConfig(base_url="http://localhost:8080", instance="test-instance", api_key="test-api-key")
SECRET_TEXT = "Sua linha digitavel 23790.12345 60000.000000"


def _sender(sleeps=None) -> EvolutionSender:
    return EvolutionSender(CONFIG, sleep=sleeps or (lambda s: None))


class TestEvolutionSender:
    def test_send_text_request(self):
        with patch("faturabot.whatsapp.evolution_sender._do_request", return_value={"key": {"id": "x"}}) as req:
            result = _sender().send_text(CALLER, "Olá")

        assert result.success
        url, data, headers = req.call_args.args
        assert url == "http://localhost:8080/message/sendText/test-instance"
        assert headers["apikey"] == "test-api-key"
        assert json.loads(data) == {"number": CALLER, "text": "Olá"}

    def test_send_document_request(self):
        with patch("faturabot.whatsapp.evolution_sender._do_request", return_value={}) as req:
            result = _sender().send_document(CALLER, PDF_BASE64, "boleto_1.pdf", "application/pdf")

        assert result.success
        url, data, _ = req.call_args.args
        assert url == "http://localhost:8080/message/sendMedia/test-instance"
        body = json.loads(data)
        assert body["mediatype"] == "document"
        assert body["media"] == PDF_BASE64
        assert body["fileName"] == "boleto_1.pdf"
        assert body["mimetype"] == "application/pdf"

    def test_not_configured_fails_without_request(self):
        sender = EvolutionSender(EvolutionConfig(base_url="http://localhost:8080"))
        with patch("faturabot.whatsapp.evolution_sender._do_request") as req:
            result = sender.send_text(CALLER, "Olá")

        assert result.success is False
        assert result.error == "evolution_not_configured"
        req.assert_not_called()

    def test_transient_failure_is_retried_once(self, sleeps):
        error = urllib.error.URLError("connection refused")
        with patch("faturabot.whatsapp.evolution_sender._do_request", side_effect=[error, {}]) as req:
            result = _sender(sleeps).send_text(CALLER, "Olá")

        assert result.success
        assert req.call_count == 2
        assert sleeps.calls == [0.2]

    def test_gives_up_after_two_attempts(self, sleeps):
        error = urllib.error.URLError("connection refused")
        with patch("faturabot.whatsapp.evolution_sender._do_request", side_effect=error) as req:
            result = _sender(sleeps).send_text(CALLER, "Olá")

        assert result.success is False
        assert result.unavailable is True
        assert req.call_count == 2


class TestNoPiiLeakage:
    def test_logs_never_contain_recipient_text_or_key(self):
        recorder = LogRecorder()
        error = urllib.error.URLError("connection refused")

        with patch("faturabot.whatsapp.evolution_sender.logger", recorder), \
             patch("faturabot.infra.resilience.logger", recorder), \
             patch("faturabot.whatsapp.evolution_sender._do_request", side_effect=[{}, error, error]):
            sender = _sender()
            sender.send_text(CALLER, SECRET_TEXT)
            sender.send_document(CALLER, PDF_BASE64, "boleto_1.pdf", "application/pdf")

        logged = recorder.get_all_logged_content()
        assert CALLER not in logged
        assert SECRET_TEXT not in logged
        assert "23790.12345" not in logged
        assert PDF_BASE64 not in logged
        assert "test-api-key" not in logged

    def test_logs_carry_hash_and_length(self):
        recorder = LogRecorder()

        with patch("faturabot.whatsapp.evolution_sender.logger", recorder), \
             patch("faturabot.whatsapp.evolution_sender._do_request", return_value={}):
            _sender().send_text(CALLER, SECRET_TEXT)

        fields = recorder.extra_fields("outbound message sent")
        assert len(fields["to_hash"]) == 12
        assert fields["text_len"] == str(len(SECRET_TEXT))
        assert fields["kind"] == "text"
