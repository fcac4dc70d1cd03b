from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

MEDIA_TYPES = ("image", "video", "audio", "document", "unknown")

# Áudio de voz do WhatsApp: arquivo cifrado servido pelo CDN da Meta.
ENCRYPTED_AUDIO_PATH = "/t62.7117-24/"
WHATSAPP_IMAGE_PATH = "/t24/f2/"


@dataclass(frozen=True)
class DetectedMedia:
    kind: str
    mime_type: str
    confidence: str


_EXT_TO_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".3gp": "video/3gpp",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".zip": "application/zip",
}

_MIME_TO_EXT = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
    "audio/opus": ".opus",
}

# Ordem importa: .ogg casa com vídeo antes de áudio.
_URL_PATTERNS = (
    ("image", re.compile(r"\.(jpeg|jpg|gif|png|webp|bmp|svg)(\?.*)?$", re.IGNORECASE)),
    ("video", re.compile(r"\.(mp4|webm|ogg|mov)(\?.*)?$", re.IGNORECASE)),
    ("audio", re.compile(r"\.(mp3|wav|ogg|m4a|aac)(\?.*)?$", re.IGNORECASE)),
    ("document", re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx)(\?.*)?$", re.IGNORECASE)),
)

_FALLBACK_MIME_BY_TYPE = {
    "image": "image/jpeg",
    "video": "video/mp4",
    "audio": "audio/mpeg",
    "document": "application/pdf",
}


def _safe_lower(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def is_encrypted_whatsapp_audio(url: Optional[str]) -> bool:
    u = url or ""
    return ".enc" in u and ENCRYPTED_AUDIO_PATH in u


def _type_from_mime(mime: str) -> str:
    if mime.startswith("image/"):
        return "image"
    if mime.startswith("video/"):
        return "video"
    if mime.startswith("audio/"):
        return "audio"
    if "pdf" in mime or "document" in mime:
        return "document"
    return ""


def detect_media_type(
    url: str,
    declared_mime_type: Optional[str] = None,
    explicit_type: Optional[str] = None,
) -> str:
    """Classifica uma URL de mídia em image/video/audio/document/unknown.

    Precedência: MIME declarado, tipo explícito do chamador, marcador de áudio
    cifrado do WhatsApp, extensão na URL.
    """
    by_mime = _type_from_mime(_safe_lower(declared_mime_type))
    if by_mime:
        return by_mime

    explicit = _safe_lower(explicit_type)
    if explicit in MEDIA_TYPES and explicit != "unknown":
        return explicit

    if is_encrypted_whatsapp_audio(url):
        return "audio"

    lowered = (url or "").lower()
    for kind, pattern in _URL_PATTERNS:
        if pattern.search(lowered):
            return kind
    return "unknown"


def guess_mime_from_extension(filename: Optional[str]) -> str:
    if not filename:
        return ""
    name = filename.strip().lower()
    if "://" in name:
        name = urlsplit(name).path
    dot = name.rfind(".")
    if dot < 0:
        return ""
    return _EXT_TO_MIME.get(name[dot:], "")


def determine_mime_type(url: str, media_type: Optional[str] = None) -> str:
    """Content-Type a devolver para bytes proxied quando o upstream não informa."""
    kind = _safe_lower(media_type)
    if kind in _FALLBACK_MIME_BY_TYPE:
        if kind == "audio" and is_encrypted_whatsapp_audio(url):
            return "audio/ogg"
        return _FALLBACK_MIME_BY_TYPE[kind]

    u = (url or "").lower()
    if ENCRYPTED_AUDIO_PATH in u or "audio" in u:
        return "audio/ogg"
    if WHATSAPP_IMAGE_PATH in u or "image" in u or ".jpg" in u or ".png" in u:
        return "image/jpeg"
    if "video" in u or ".mp4" in u:
        return "video/mp4"
    return guess_mime_from_extension(url) or "application/octet-stream"


def extension_for_mime(mime: Optional[str]) -> str:
    return _MIME_TO_EXT.get(_safe_lower(mime), ".bin")


def cloudinary_resource_type(mime: Optional[str]) -> str:
    mt = _safe_lower(mime)
    if mt.startswith("image/"):
        return "image"
    # Cloudinary guarda áudio como recurso de vídeo.
    if mt.startswith("video/") or mt.startswith("audio/"):
        return "video"
    return "auto"


def sniff_mime_from_bytes(head: bytes) -> str:
    if not head:
        return ""
    if head.startswith(b"\xFF\xD8\xFF"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"GIF87a") or head.startswith(b"GIF89a"):
        return "image/gif"
    if head.startswith(b"%PDF"):
        return "application/pdf"
    if head.startswith(b"ID3"):
        return "audio/mpeg"
    if len(head) >= 12 and head[0:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "audio/wav"
    if len(head) >= 12 and head[0:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head.startswith(b"OggS"):
        return "audio/ogg"
    if len(head) >= 12 and head[4:8] == b"ftyp":
        return "video/mp4"
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"
    return ""


def _kind_from_mime(mime_type: str) -> str:
    mt = _safe_lower(mime_type)
    if not mt:
        return "unknown"
    if mt.startswith("image/"):
        return "image"
    if mt.startswith("audio/") or mt.endswith("+opus"):
        return "audio"
    if mt.startswith("video/"):
        return "video"
    return "document"


def detect_media_kind(
    *,
    declared_mime_type: Optional[str] = None,
    filename: Optional[str] = None,
    head_bytes: Optional[bytes] = None,
    hinted_kind: Optional[str] = None,
) -> DetectedMedia:
    """Detecção para conteúdo já baixado: bytes valem mais que cabeçalhos."""
    hinted = _safe_lower(hinted_kind)
    if hinted in {"image", "audio", "video", "document"}:
        mime = (
            _safe_lower(declared_mime_type)
            or guess_mime_from_extension(filename)
            or sniff_mime_from_bytes(head_bytes or b"")
            or "application/octet-stream"
        )
        return DetectedMedia(kind=hinted, mime_type=mime, confidence="high")

    sniffed = sniff_mime_from_bytes(head_bytes or b"")
    if sniffed:
        return DetectedMedia(kind=_kind_from_mime(sniffed), mime_type=sniffed, confidence="high")

    declared = _safe_lower(declared_mime_type)
    if declared and declared != "application/octet-stream":
        return DetectedMedia(kind=_kind_from_mime(declared), mime_type=declared, confidence="medium")

    ext_mime = guess_mime_from_extension(filename)
    if ext_mime:
        return DetectedMedia(kind=_kind_from_mime(ext_mime), mime_type=ext_mime, confidence="low")

    return DetectedMedia(kind="unknown", mime_type="application/octet-stream", confidence="low")
