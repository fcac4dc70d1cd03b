"""Normalização das respostas da Evolution API.

Cada versão do servidor devolve contatos, chats e mensagens em um envelope
diferente (lista pura, `{data: [...]}`, `{data: {chats: [...]}}`, mapa por id...).
As funções aqui aceitam qualquer um desses formatos e nunca levantam exceção:
entrada irreconhecível vira lista vazia.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..utils.phone_utils import extract_phone_from_jid, is_broadcast_jid, is_group_jid

DEFAULT_WRAPPER_KEYS = ("data", "contacts", "chats", "result", "messages")
_ID_KEYS = ("id", "jid", "remoteJid")

_MEDIA_KINDS = {
    "imageMessage": "image",
    "videoMessage": "video",
    "audioMessage": "audio",
    "documentMessage": "document",
    "stickerMessage": "sticker",
}


def _is_record(value: Any) -> bool:
    return isinstance(value, dict) and any(value.get(k) for k in _ID_KEYS)


def extract_records(payload: Any, wrapper_keys: Iterable[str] = DEFAULT_WRAPPER_KEYS) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    keys = tuple(wrapper_keys)
    for key in keys:
        if isinstance(payload.get(key), list):
            return payload[key]
    for outer in keys:
        nested = payload.get(outer)
        if isinstance(nested, dict):
            for key in keys:
                if isinstance(nested.get(key), list):
                    return nested[key]
    if _is_record(payload):
        return [payload]
    return [v for v in payload.values() if _is_record(v)]


def _record_id(record: dict) -> str:
    for key in _ID_KEYS:
        value = record.get(key)
        if value:
            return str(value)
    key = record.get("key")
    if isinstance(key, dict) and key.get("remoteJid"):
        return str(key["remoteJid"])
    return ""


def _inner_message(message: Any) -> Optional[dict]:
    if isinstance(message, dict) and isinstance(message.get("message"), dict):
        return message["message"]
    return None


def message_preview(message: Any) -> str:
    if not message:
        return "..."
    if isinstance(message, str):
        return message
    if not isinstance(message, dict):
        return "..."

    inner = _inner_message(message)
    if inner:
        if inner.get("conversation"):
            return str(inner["conversation"])
        ext = inner.get("extendedTextMessage")
        if isinstance(ext, dict) and ext.get("text"):
            return str(ext["text"])
        if isinstance(inner.get("imageMessage"), dict):
            return f"🖼️ {inner['imageMessage'].get('caption') or 'Imagem'}"
        if isinstance(inner.get("videoMessage"), dict):
            return f"🎬 {inner['videoMessage'].get('caption') or 'Vídeo'}"
        if "audioMessage" in inner:
            return "🔊 Áudio"
        if isinstance(inner.get("documentMessage"), dict):
            return f"📄 {inner['documentMessage'].get('caption') or 'Documento'}"
        if "stickerMessage" in inner:
            return "😊 Sticker"
        if "locationMessage" in inner:
            return "📍 Localização"
        if isinstance(inner.get("contactMessage"), dict):
            return f"👤 {inner['contactMessage'].get('displayName') or 'Contato'}"

    for key in ("text", "body", "content"):
        if isinstance(message.get(key), str) and message[key]:
            return message[key]
    if message.get("type"):
        return f"({message['type']})"
    return "..."


def _to_number(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("low") or value.get("value")
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_millis(value: Any) -> float:
    ts = _to_number(value)
    if 0 < ts < 1e12:
        ts *= 1000
    return ts


def normalize_chats_response(payload: Any) -> list[dict]:
    chats: list[dict] = []
    for chat in extract_records(payload):
        if not isinstance(chat, dict):
            continue
        chat_id = _record_id(chat)
        name = chat.get("name") or chat.get("pushName") or chat.get("subject") or (chat_id.split("@")[0] if chat_id else "Desconhecido")
        timestamp = chat.get("t") or chat.get("timestamp") or chat.get("lastMessageTimestamp") or chat.get("updatedAt") or 0

        last = chat.get("lastMessage")
        if not last and isinstance(chat.get("messages"), list) and chat["messages"]:
            last = chat["messages"][-1]

        chats.append(
            {
                "id": chat_id,
                "name": name,
                "pushName": chat.get("pushName") or name,
                "phone": chat.get("phone") or chat_id,
                "lastMessage": message_preview(last) if last else "Nenhuma mensagem",
                "timestamp": timestamp,
                "unreadCount": chat.get("unreadCount") or 0,
            }
        )
    chats.sort(key=lambda c: _to_millis(c["timestamp"]), reverse=True)
    return chats


def normalize_contacts_response(payload: Any, include_groups: bool = False) -> list[dict]:
    contacts: list[dict] = []
    for contact in extract_records(payload):
        if not isinstance(contact, dict):
            continue
        raw_id = contact.get("id") or contact.get("jid") or contact.get("wid") or contact.get("remoteJid")
        contact_id = str(raw_id or "")
        if not contact_id:
            continue
        is_group = bool(contact.get("isGroup")) or is_group_jid(contact_id)
        if not include_groups and (is_group or is_broadcast_jid(contact_id)):
            continue
        contacts.append(
            {
                "id": raw_id,
                "name": contact.get("name") or contact.get("pushName") or contact.get("pushname") or contact.get("displayName") or extract_phone_from_jid(contact_id) or "Desconhecido",
                "phone": contact.get("phone") or contact.get("number") or contact_id,
                "pushName": contact.get("pushName") or contact.get("pushname") or "",
                "profilePicture": contact.get("profilePictureUrl") or contact.get("profilePicUrl") or contact.get("imgUrl") or "",
                "isGroup": is_group,
            }
        )
    return contacts


def _media_fields(inner: Optional[dict]) -> tuple[str, Optional[str], Optional[str]]:
    if not inner:
        return "text", None, None
    for key, kind in _MEDIA_KINDS.items():
        media = inner.get(key)
        if isinstance(media, dict):
            return kind, media.get("url"), media.get("mimetype")
    if "locationMessage" in inner:
        return "location", None, None
    if "contactMessage" in inner:
        return "contact", None, None
    return "text", None, None


def _message_content(msg: Any, inner: Optional[dict]) -> str:
    if isinstance(msg, str):
        return msg
    for key in ("text", "body", "content"):
        if isinstance(msg.get(key), str) and msg[key]:
            return msg[key]
    if isinstance(msg.get("message"), str):
        return msg["message"]
    if inner:
        preview = message_preview(msg)
        if preview != "...":
            return preview
        return "Mensagem não suportada"
    return ""


def normalize_messages_response(payload: Any) -> list[dict]:
    out: list[dict] = []
    for msg in extract_records(payload, ("messages", "data", "records", "result")):
        if isinstance(msg, str):
            msg = {"text": msg}
        if not isinstance(msg, dict):
            continue
        key = msg.get("key") if isinstance(msg.get("key"), dict) else {}
        inner = _inner_message(msg)
        msg_type, media_url, mimetype = _media_fields(inner)
        from_me = bool(msg.get("fromMe") or key.get("fromMe") or False)
        millis = _to_millis(msg.get("timestamp") or msg.get("messageTimestamp") or msg.get("t"))

        out.append(
            {
                "id": msg.get("id") or key.get("id") or "unknown",
                "fromMe": from_me,
                "remoteJid": key.get("remoteJid") or msg.get("remoteJid") or "",
                "content": _message_content(msg, inner),
                "type": _MEDIA_KINDS.get(str(msg.get("messageType") or "")) or msg_type,
                "mediaUrl": msg.get("mediaUrl") or media_url,
                "mimetype": msg.get("mimetype") or mimetype,
                "timestamp": datetime.fromtimestamp(millis / 1000, tz=timezone.utc).isoformat() if millis else None,
                "status": msg.get("status") or ("sent" if from_me else "received"),
                "_sort": millis,
            }
        )
    out.sort(key=lambda m: m["_sort"])
    for m in out:
        m.pop("_sort", None)
    return out
