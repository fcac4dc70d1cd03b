"""Cliente da Evolution API apoiado no prober de endpoints."""

import logging
from typing import Any, Optional

from .utils.phone_utils import digits_only
from .whatsapp.credentials import ServerCredentials
from .whatsapp.endpoints import EndpointProber, ProbeResult
from .whatsapp.errors import EndpointsExhaustedError
from .whatsapp.normalizer import (
    normalize_chats_response,
    normalize_contacts_response,
    normalize_messages_response,
)
from .whatsapp.observability import LogContext

logger = logging.getLogger(__name__)

_MEDIA_KEYS = {
    "imageMessage": "image",
    "videoMessage": "video",
    "audioMessage": "audio",
    "documentMessage": "document",
    "stickerMessage": "sticker",
}

_WRAPPER_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
    "editedMessage",
)


def format_phone(phone: str) -> str:
    """Só dígitos; números brasileiros locais ganham o DDI 55."""
    number = digits_only(phone)
    if len(number) == 11 and number[0] != "5":
        number = "55" + number
    elif len(number) == 10:
        number = "55" + number
    return number


def _qr_value(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in ("base64", "qrcode", "code", "qr"):
        value = payload.get(key)
        if isinstance(value, dict):
            value = value.get("base64") or value.get("code")
        if isinstance(value, str) and value.strip():
            return value
    return None


def has_qr_code(payload: Any) -> bool:
    if isinstance(payload, str):
        return False
    value = _qr_value(payload)
    if not value:
        return False
    head = value.lstrip()[:15].lower()
    return not (head.startswith("<!doctype") or head.startswith("<html"))


def is_connected(payload: Any) -> tuple[bool, str]:
    if not isinstance(payload, dict):
        return False, ""
    source = payload.get("instance") if isinstance(payload.get("instance"), dict) else payload
    state = str(source.get("state") or source.get("status") or "").lower()
    connected = state in {"open", "connected"} or source.get("connected") is True
    return connected, state


class EvolutionAPI:
    def __init__(self, creds: ServerCredentials, prober: EndpointProber, *, ctx: Optional[LogContext] = None):
        self.creds = creds
        self.prober = prober
        self.ctx = ctx or LogContext(server_id=creds.server_id, instance_name=creds.instance_id)

    @property
    def instance(self) -> str:
        return self.creds.instance_id

    async def _probe(self, operation: str, **kwargs: Any) -> ProbeResult:
        return await self.prober.probe(operation, self.creds, ctx=self.ctx, **kwargs)

    async def connection_state(self) -> dict:
        result = await self._probe("connection_state", accept=lambda p: isinstance(p, dict))
        connected, state = is_connected(result.payload)
        return {"connected": connected, "state": state, "raw": result.payload}

    async def fetch_qrcode(self) -> dict:
        result = await self._probe("fetch_qrcode", accept=has_qr_code)
        return {"qrCode": _qr_value(result.payload), "endpoint": result.endpoint, "raw": result.payload}

    async def fetch_contacts(self) -> dict:
        result = await self._probe("fetch_contacts")
        contacts = normalize_contacts_response(result.payload)
        return {"contacts": contacts, "endpoint": result.endpoint, "attempts": result.attempts}

    async def fetch_direct_contacts(self) -> dict:
        result = await self._probe("direct_contacts")
        contacts = normalize_contacts_response(result.payload)
        return {"contacts": contacts, "endpoint": result.endpoint, "attempts": result.attempts}

    async def fetch_chats(self) -> list:
        result = await self._probe("fetch_chats")
        return normalize_chats_response(result.payload)

    async def fetch_messages(self, remote_jid: str, limit: int = 50) -> list:
        body = {"where": {"key": {"remoteJid": remote_jid}}, "limit": limit}
        try:
            result = await self._probe("fetch_messages", body=body)
        except EndpointsExhaustedError as e:
            # Conversa sem histórico devolve corpo vazio; não é falha do servidor.
            if any(a.get("status") == 200 for a in e.attempts):
                return []
            raise
        return normalize_messages_response(result.payload)

    async def send_text(self, phone: str, text: str) -> dict:
        number = format_phone(phone)
        body = {"number": number, "text": text, "textMessage": {"text": text}, "options": {"delay": 1200}}
        result = await self._probe("send_text", body=body, accept=lambda p: p is not None)
        logger.info(f"Mensagem enviada para {number} via {result.endpoint}")
        return {"success": True, "data": result.payload, "endpoint": result.endpoint}

    async def get_base64_from_media_message(self, message_id: str, remote_jid: str = "", from_me: bool = False) -> dict:
        body = {
            "message": {"key": {"id": message_id, "remoteJid": remote_jid, "fromMe": bool(from_me)}},
            "convertToMp4": False,
        }
        result = await self._probe(
            "media_base64",
            body=body,
            accept=lambda p: isinstance(p, dict) and bool(p.get("base64")),
        )
        return result.payload


def _unwrap_content(content: Any) -> dict:
    cur = content
    for _ in range(8):
        if not isinstance(cur, dict):
            return {}
        for key in _WRAPPER_KEYS:
            wrapped = cur.get(key)
            if isinstance(wrapped, dict) and isinstance(wrapped.get("message"), dict):
                cur = wrapped["message"]
                break
        else:
            return cur
    return cur if isinstance(cur, dict) else {}


def _text_of(content: dict) -> Optional[str]:
    if isinstance(content.get("conversation"), str):
        return content["conversation"]
    ext = content.get("extendedTextMessage")
    if isinstance(ext, dict):
        return ext.get("text")
    for key, label in (("buttonsResponseMessage", "selectedDisplayText"), ("templateButtonReplyMessage", "selectedDisplayText")):
        reply = content.get(key)
        if isinstance(reply, dict):
            return reply.get(label) or reply.get("selectedButtonId") or reply.get("selectedId")
    reply = content.get("listResponseMessage")
    if isinstance(reply, dict):
        ssr = reply.get("singleSelectReply") or {}
        return reply.get("title") or (ssr.get("selectedRowId") if isinstance(ssr, dict) else None)
    reaction = content.get("reactionMessage")
    if isinstance(reaction, dict):
        return reaction.get("text")
    return None


_PLACEHOLDERS = {
    "image": "[Imagem]",
    "video": "[Vídeo]",
    "audio": "[Áudio]",
    "document": "[Documento]",
    "sticker": "[Sticker]",
}


def _parse_message(msg: dict, instance: Any) -> dict:
    key = msg.get("key") if isinstance(msg.get("key"), dict) else {}
    content = _unwrap_content(msg.get("message") or {})

    msg_type, media_url, mimetype, text = "text", None, None, _text_of(content)
    for media_key, kind in _MEDIA_KEYS.items():
        media = content.get(media_key)
        if isinstance(media, dict):
            msg_type = kind
            media_url = media.get("url")
            mimetype = media.get("mimetype")
            text = media.get("caption") or media.get("fileName") or None
            break
    if msg_type == "text" and not text:
        if "locationMessage" in content:
            text = "[Localização]"
        elif "contactMessage" in content or "contactsArrayMessage" in content:
            text = "[Contato]"
    if not (text or "").strip():
        text = _PLACEHOLDERS.get(msg_type, "[Mensagem]")

    remote_jid_raw = key.get("remoteJid") or msg.get("remoteJid") or ""
    return {
        "event": "message",
        "instance": instance,
        "message_id": key.get("id"),
        "from_me": bool(key.get("fromMe", False)),
        "remote_jid": str(remote_jid_raw).split("@")[0].strip(),
        "remote_jid_raw": remote_jid_raw,
        "content": text,
        "type": msg_type,
        "media_url": media_url,
        "mimetype": mimetype,
        "timestamp": msg.get("messageTimestamp"),
        "push_name": msg.get("pushName"),
    }


def parse_webhook_message(payload: dict) -> dict:
    """Converte um evento de webhook da Evolution em um dicionário plano.

    Eventos tratados: messages.upsert, connection.update, qrcode.updated e
    presence.update. Os demais passam adiante com `data` original.
    """
    payload = payload if isinstance(payload, dict) else {}
    event = str(payload.get("event") or "").strip()
    normalized = event.lower().replace("_", ".")
    instance = payload.get("instance") or payload.get("instanceName") or payload.get("instance_name")

    data = payload.get("data") or {}
    for _ in range(4):
        if isinstance(data, dict) and list(data.keys()) == ["data"]:
            data = data["data"]
        else:
            break

    if normalized in ("messages.upsert", "messages") and isinstance(data, dict):
        if isinstance(data.get("messages"), list) and data["messages"]:
            first = data["messages"][0]
        elif "key" in data or "message" in data:
            first = data
        else:
            first = None
        if isinstance(first, dict):
            return _parse_message(first, instance)

    elif normalized in ("connection.update", "connection") and isinstance(data, dict):
        state = data.get("state")
        return {
            "event": "connection",
            "instance": instance,
            "state": state.lower() if isinstance(state, str) else "",
            "status_reason": data.get("statusReason"),
            "raw_data": data,
        }

    elif normalized in ("qrcode.updated", "qrcode") and isinstance(data, dict):
        qr = data.get("qrcode")
        return {
            "event": "qrcode",
            "instance": instance,
            "qrcode": qr.get("base64") if isinstance(qr, dict) else qr,
        }

    elif normalized == "presence.update" and isinstance(data, dict):
        presences = data.get("presences")
        presence = presences[0] if isinstance(presences, list) and presences else data
        if not isinstance(presence, dict):
            presence = {}
        return {
            "event": "presence",
            "instance": instance,
            "remote_jid": str(presence.get("id") or "").split("@")[0],
            "presence": presence.get("presence"),
            "participant": presence.get("participant"),
        }

    return {"event": normalized or event, "instance": instance, "data": data}
