from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, quote, urlsplit

from ..whatsapp.observability import LogContext, Observability
from .cache import MediaUrlCache
from .cloudinary_pipeline import CloudinaryMediaPipeline
from .detection import detect_media_type, is_encrypted_whatsapp_audio

MEDIA_PROXY_PATH = "/api/media-proxy"
AUDIO_PROXY_PATH = "/api/audio-proxy"

MODE_PROXY = "proxy"
MODE_CLOUDINARY = "cloudinary"


def encode_uri_component(value: str) -> str:
    # Mesmo conjunto de caracteres preservados pelo encodeURIComponent do navegador.
    return quote(value or "", safe="!~*'()")


@dataclass(frozen=True)
class ResolvedMedia:
    original_url: str
    url: str
    media_type: str
    cached: bool = False

    def as_dict(self) -> dict:
        return {
            "originalUrl": self.original_url,
            "url": self.url,
            "mediaType": self.media_type,
            "cached": self.cached,
        }


def build_proxy_url(original_url: str, media_type: str) -> str:
    encoded = encode_uri_component(original_url)
    if media_type == "audio" and ".enc" in (original_url or ""):
        return f"{AUDIO_PROXY_PATH}?url={encoded}"
    return f"{MEDIA_PROXY_PATH}?url={encoded}&type={media_type}"


def media_type_of_resolved(resolved_url: str) -> str:
    """Tipo de mídia a partir de uma URL já resolvida (proxy ou Cloudinary)."""
    parts = urlsplit(resolved_url or "")
    if parts.path == AUDIO_PROXY_PATH:
        return "audio"
    declared = (parse_qs(parts.query).get("type") or [""])[0]
    if declared:
        return declared
    if "/image/upload/" in parts.path:
        return "image"
    if "/video/upload/" in parts.path:
        return "audio" if parts.path.endswith(".mp3") else "video"
    if "/raw/upload/" in parts.path:
        return "document"
    return "unknown"


class MediaResolver:
    def __init__(
        self,
        *,
        cache: MediaUrlCache,
        obs: Observability,
        pipeline: Optional[CloudinaryMediaPipeline] = None,
        mode: str = MODE_PROXY,
    ):
        self._cache = cache
        self._obs = obs
        self._pipeline = pipeline
        self._mode = mode if mode in (MODE_PROXY, MODE_CLOUDINARY) else MODE_PROXY

    @property
    def mode(self) -> str:
        return self._mode

    async def resolve(
        self,
        url: str,
        declared_mime_type: Optional[str] = None,
        explicit_type: Optional[str] = None,
        *,
        ctx: Optional[LogContext] = None,
    ) -> ResolvedMedia:
        cached = self._cache.get(url)
        if cached is not None:
            return ResolvedMedia(original_url=url, url=cached, media_type=media_type_of_resolved(cached), cached=True)

        media_type = detect_media_type(url, declared_mime_type, explicit_type)

        if self._mode == MODE_CLOUDINARY and self._pipeline is not None:
            hint = declared_mime_type
            if not hint and is_encrypted_whatsapp_audio(url):
                hint = "audio/ogg"
            resolved_url = await self._pipeline.upload(url, hint, ctx=ctx)
        else:
            resolved_url = build_proxy_url(url, media_type)
        self._cache.set(url, resolved_url)

        self._obs.debug("media.resolved", ctx=ctx, media_type=media_type, mode=self._mode)
        return ResolvedMedia(original_url=url, url=resolved_url, media_type=media_type, cached=False)
