from __future__ import annotations

import asyncio
import importlib
import logging
import sys
from pathlib import Path
from unittest import mock

import pytest


def _ensure_backend_on_path() -> None:
    here = Path(__file__).resolve()
    backend_dir = here.parent.parent
    root = backend_dir.parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


def _api():
    _ensure_backend_on_path()
    evo_mod = importlib.import_module("liguia.evolution_api")
    endpoints_mod = importlib.import_module("liguia.whatsapp.endpoints")
    registry_mod = importlib.import_module("liguia.whatsapp.providers.registry")
    evolution_mod = importlib.import_module("liguia.whatsapp.providers.evolution")
    obs_mod = importlib.import_module("liguia.whatsapp.observability")
    creds_mod = importlib.import_module("liguia.whatsapp.credentials")

    registry = registry_mod.AdapterRegistry()
    registry.register(evolution_mod.EVOLUTION_V2)
    prober = endpoints_mod.EndpointProber(registry=registry, obs=obs_mod.Observability(logging.getLogger("test.evolution")))
    creds = creds_mod.ServerCredentials(api_url="https://evo.example.com", api_token="tok", instance_id="loja")
    return evo_mod.EvolutionAPI(creds, prober), evo_mod


def _send(by_path):
    http_mod = importlib.import_module("liguia.whatsapp.http")

    async def send(method, path, *, json=None, timeout_s=None):
        status, payload = by_path.get(path, (404, None))
        return http_mod.HttpResult(status_code=status, payload=payload, url=path)

    return send


def _http():
    _ensure_backend_on_path()
    return importlib.import_module("liguia.whatsapp.http")


def test_format_phone_adds_brazil_country_code() -> None:
    _, evo_mod = _api()
    assert evo_mod.format_phone("(21) 99999-8888") == "5521999998888"
    assert evo_mod.format_phone("2133334444") == "552133334444"
    assert evo_mod.format_phone("+55 21 99999-8888") == "5521999998888"


def test_connection_state_reads_nested_instance() -> None:
    api, _ = _api()
    http_mod = _http()
    by_path = {"/instance/connectionState/loja": (200, {"instance": {"instanceName": "loja", "state": "open"}})}
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send(by_path)
        state = asyncio.run(api.connection_state())
    assert state["connected"] is True
    assert state["state"] == "open"


def test_fetch_qrcode_ignores_html_pages() -> None:
    api, _ = _api()
    http_mod = _http()
    by_path = {
        "/instance/connect/loja": (200, {"base64": "<!DOCTYPE html><html>"}),
        "/instance/qrcode/loja": (200, "<html>login</html>"),
        "/api/v1/instance/qrcode/loja": (200, {"qrcode": {"base64": "data:image/png;base64,QR"}}),
    }
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send(by_path)
        result = asyncio.run(api.fetch_qrcode())
    assert result["qrCode"] == "data:image/png;base64,QR"
    assert result["endpoint"] == "/api/v1/instance/qrcode/loja"


def test_fetch_contacts_normalizes_payload() -> None:
    api, _ = _api()
    http_mod = _http()
    by_path = {
        "/instance/fetchContacts/loja": (
            200,
            {"data": [{"id": "5511999999999@s.whatsapp.net", "pushName": "Ana"}, {"id": "1203@g.us"}]},
        ),
    }
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send(by_path)
        result = asyncio.run(api.fetch_contacts())
    assert [c["name"] for c in result["contacts"]] == ["Ana"]
    assert result["endpoint"] == "/instance/fetchContacts/loja"


def test_fetch_messages_empty_history_returns_empty_list() -> None:
    api, _ = _api()
    http_mod = _http()
    by_path = {"/chat/findMessages/loja": (200, [])}
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send(by_path)
        messages = asyncio.run(api.fetch_messages("5511999999999@s.whatsapp.net", limit=10))
    assert messages == []
    body = send_mock.call_args[1]["json"]
    assert body == {"where": {"key": {"remoteJid": "5511999999999@s.whatsapp.net"}}, "limit": 10}


def test_fetch_messages_server_failure_propagates() -> None:
    api, _ = _api()
    http_mod = _http()
    errors_mod = importlib.import_module("liguia.whatsapp.errors")
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send({"/chat/findMessages/loja": (500, {"error": "x"})})
        with pytest.raises(errors_mod.EndpointsExhaustedError):
            asyncio.run(api.fetch_messages("5511999999999@s.whatsapp.net"))


def test_send_text_accepts_created_status_and_formats_number() -> None:
    api, _ = _api()
    http_mod = _http()
    by_path = {"/message/sendText/loja": (201, {"key": {"id": "ABC"}})}
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send(by_path)
        result = asyncio.run(api.send_text("(11) 98888-7777", "Olá"))
    assert result["data"] == {"key": {"id": "ABC"}}
    assert result["endpoint"] == "/message/sendText/loja"
    body = send_mock.call_args[1]["json"]
    assert body["number"] == "5511988887777"
    assert body["text"] == "Olá"


def test_media_base64_requires_base64_field() -> None:
    api, _ = _api()
    http_mod = _http()
    errors_mod = importlib.import_module("liguia.whatsapp.errors")
    by_path = {"/chat/getBase64FromMediaMessage/loja": (201, {"mimetype": "audio/ogg"})}
    with mock.patch.object(http_mod.HttpClient, "send") as send_mock:
        send_mock.side_effect = _send(by_path)
        with pytest.raises(errors_mod.EndpointsExhaustedError):
            asyncio.run(api.get_base64_from_media_message("MSG1", "55@s.whatsapp.net"))
    body = send_mock.call_args[1]["json"]
    assert body["message"]["key"] == {"id": "MSG1", "remoteJid": "55@s.whatsapp.net", "fromMe": False}


# ==================== WEBHOOK ====================

def test_parse_webhook_message_upsert_with_media() -> None:
    _, evo_mod = _api()
    payload = {
        "event": "messages.upsert",
        "instance": "loja",
        "data": {
            "key": {"id": "MSG1", "remoteJid": "5511999999999@s.whatsapp.net", "fromMe": False},
            "pushName": "Ana",
            "message": {
                "ephemeralMessage": {
                    "message": {
                        "audioMessage": {
                            "url": "https://mmg.whatsapp.net/v/t62.7117-24/1_n.enc?x=1",
                            "mimetype": "audio/ogg; codecs=opus",
                        }
                    }
                }
            },
            "messageTimestamp": 1700000000,
        },
    }
    event = evo_mod.parse_webhook_message(payload)
    assert event["event"] == "message"
    assert event["instance"] == "loja"
    assert event["remote_jid"] == "5511999999999"
    assert event["type"] == "audio"
    assert event["content"] == "[Áudio]"
    assert event["media_url"].endswith(".enc?x=1")
    assert event["push_name"] == "Ana"


def test_parse_webhook_text_message_in_list() -> None:
    _, evo_mod = _api()
    payload = {
        "event": "MESSAGES_UPSERT",
        "instance": "loja",
        "data": {"messages": [{"key": {"id": "M", "remoteJid": "55@s.whatsapp.net", "fromMe": True}, "message": {"conversation": "oi"}}]},
    }
    event = evo_mod.parse_webhook_message(payload)
    assert event["content"] == "oi"
    assert event["from_me"] is True
    assert event["type"] == "text"


def test_parse_webhook_connection_and_qrcode() -> None:
    _, evo_mod = _api()
    conn = evo_mod.parse_webhook_message({"event": "connection.update", "instance": "loja", "data": {"state": "OPEN", "statusReason": 200}})
    assert conn == {
        "event": "connection",
        "instance": "loja",
        "state": "open",
        "status_reason": 200,
        "raw_data": {"state": "OPEN", "statusReason": 200},
    }
    qr = evo_mod.parse_webhook_message({"event": "qrcode.updated", "instance": "loja", "data": {"qrcode": {"base64": "data:QR"}}})
    assert qr["qrcode"] == "data:QR"

    other = evo_mod.parse_webhook_message({"event": "chats.update", "data": {"x": 1}})
    assert other["event"] == "chats.update"
    assert other["data"] == {"x": 1}


def test_status_store_follows_connection_events() -> None:
    _ensure_backend_on_path()
    status_mod = importlib.import_module("liguia.whatsapp.connection_status")
    obs_mod = importlib.import_module("liguia.whatsapp.observability")
    store = status_mod.ConnectionStatusStore(obs_mod.Observability(logging.getLogger("test.status")))

    assert store.get("u1").connected is False

    qr = store.apply_event("u1", {"event": "qrcode", "qrcode": "data:QR"})
    assert qr.connecting is True
    assert qr.qr_code == "data:QR"

    opened = store.apply_event("u1", {"event": "connection", "state": "open", "raw_data": {"name": "Loja", "phone": "5511"}})
    assert opened.connected is True
    assert opened.qr_code is None
    assert store.get("u1").as_dict()["name"] == "Loja"

    connecting = store.apply_event("u1", {"event": "connection", "state": "connecting", "raw_data": {}})
    assert connecting.connecting is True
    assert connecting.name == "Loja"

    closed = store.apply_event("u1", {"event": "connection", "state": "close"})
    assert closed.connected is False
    assert closed.name is None

    assert store.apply_event("u1", {"event": "presence"}) is None
    assert store.get("u2").connected is False


def test_parse_webhook_presence_update() -> None:
    _, evo_mod = _api()
    event = evo_mod.parse_webhook_message(
        {
            "event": "PRESENCE_UPDATE",
            "instance": "loja",
            "data": {"presences": [{"id": "5511999999999@s.whatsapp.net", "presence": "composing"}]},
        }
    )
    assert event["event"] == "presence"
    assert event["remote_jid"] == "5511999999999"
    assert event["presence"] == "composing"
