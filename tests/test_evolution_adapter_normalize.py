"""Tests for evolution_adapter.normalize() - Evolution webhook bodies."""

from datetime import timezone

import pytest

from faturabot.whatsapp.evolution_adapter import (
    IgnoredMessage,
    InvalidPayloadError,
    extract_message,
    normalize,
)
from tests.helpers import evolution_payload


class TestNormalize:
    def test_conversation_extracts_identity_and_text(self):
        result = normalize(evolution_payload("MSG001", text="  boleto  "))

        assert len(result) == 1
        msg = result[0]
        assert msg.message_id == "MSG001"
        assert msg.identity == "5511987654321"
        assert msg.text == "boleto"
        assert msg.provider == "evolution"
        assert msg.received_at.tzinfo == timezone.utc
        assert msg.extensions["push_name"] == "Maria"

    def test_extended_text_message(self):
        payload = evolution_payload()
        payload["data"]["message"] = {"extendedTextMessage": {"text": "nota fiscal"}}

        assert normalize(payload)[0].text == "nota fiscal"

    def test_button_and_list_replies(self):
        button = evolution_payload()
        button["data"]["message"] = {"buttonsResponseMessage": {"selectedButtonId": "1"}}
        list_reply = evolution_payload()
        list_reply["data"]["message"] = {"listResponseMessage": {"title": "Boletos"}}

        assert normalize(button)[0].text == "1"
        assert normalize(list_reply)[0].text == "Boletos"

    def test_first_non_empty_text_wins(self):
        payload = evolution_payload()
        payload["data"]["message"] = {
            "conversation": "   ",
            "extendedTextMessage": {"text": "fatura"},
        }

        assert normalize(payload)[0].text == "fatura"

    def test_legacy_array_fans_out(self):
        first = evolution_payload("A1")["data"]
        second = evolution_payload("A2", text="nota")["data"]
        payload = {"event": "messages.upsert", "data": [first, second]}

        result = normalize(payload)

        assert [m.message_id for m in result] == ["A1", "A2"]

    def test_bad_item_in_array_is_dropped(self):
        good = evolution_payload("A1")["data"]
        payload = {"data": [good, {"key": {"id": "A2"}}, "garbage"]}

        result = normalize(payload)

        assert [m.message_id for m in result] == ["A1"]

    def test_ten_digit_phone_gets_country_code_and_nine(self):
        result = normalize(evolution_payload(phone="1187654321"))

        assert result[0].identity == "5511987654321"

    def test_missing_timestamp_defaults_to_now(self):
        payload = evolution_payload()
        del payload["data"]["messageTimestamp"]

        assert normalize(payload)[0].received_at is not None

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"event": "messages.upsert"},
            {"data": None},
            {"data": {"key": {"id": "X"}, "message": {"conversation": "oi"}}},
            {"data": {"key": {"remoteJid": "5511987654321@s.whatsapp.net"}, "message": {"conversation": "oi"}}},
            {"data": {"key": {"id": "X", "remoteJid": "5511987654321@s.whatsapp.net"}, "message": {}}},
            {"data": {"key": {"id": "X", "remoteJid": "5511987654321@s.whatsapp.net"}}},
            [],
            "not-a-dict",
        ],
    )
    def test_malformed_payload_yields_empty_list(self, payload):
        assert normalize(payload) == []

    def test_from_me_is_ignored(self):
        assert normalize(evolution_payload(fromMe=True)) == []

    def test_group_and_status_are_ignored(self):
        group = evolution_payload()
        group["data"]["key"]["remoteJid"] = "120363000000000000@g.us"
        status = evolution_payload()
        status["data"]["key"]["remoteJid"] = "status@broadcast"

        assert normalize(group) == []
        assert normalize(status) == []


class TestExtractMessage:
    def test_missing_remote_jid_raises(self):
        with pytest.raises(InvalidPayloadError, match="missing remoteJid"):
            extract_message({"key": {"id": "X"}, "message": {"conversation": "oi"}})

    def test_missing_text_raises(self):
        item = evolution_payload()["data"]
        item["message"] = {"imageMessage": {"url": "x"}}
        with pytest.raises(InvalidPayloadError, match="missing text"):
            extract_message(item)

    def test_from_me_raises_ignored(self):
        with pytest.raises(IgnoredMessage):
            extract_message(evolution_payload(fromMe=True)["data"])
