from __future__ import annotations

import asyncio
import hashlib
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlsplit

import cloudinary
import cloudinary.uploader

from ..whatsapp.errors import ConfigError, MediaUploadError
from ..whatsapp.http import DownloadedMedia, download_bytes
from ..whatsapp.observability import LogContext, Observability
from .cache import MediaUrlCache
from .detection import (
    cloudinary_resource_type,
    detect_media_type,
    determine_mime_type,
    extension_for_mime,
    is_encrypted_whatsapp_audio,
    sniff_mime_from_bytes,
)

CLOUDINARY_FOLDER = "whatsapp_media"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Accept-Encoding": "gzip, deflate, br",
}

Downloader = Callable[..., Awaitable[DownloadedMedia]]
Uploader = Callable[..., dict]


@dataclass(frozen=True)
class EvolutionAccess:
    base_url: str
    api_key: str

    @property
    def host(self) -> str:
        return (urlsplit(self.base_url).hostname or "").lower()


def configure_cloudinary() -> None:
    """Aplica as credenciais do ambiente no SDK; levanta ConfigError se faltarem."""
    name = (os.getenv("CLOUDINARY_CLOUD_NAME") or "").strip()
    key = (os.getenv("CLOUDINARY_API_KEY") or "").strip()
    secret = (os.getenv("CLOUDINARY_API_SECRET") or "").strip()
    if name and key and secret:
        cloudinary.config(cloud_name=name, api_key=key, api_secret=secret, secure=True)
    elif (os.getenv("CLOUDINARY_URL") or "").strip() and not cloudinary.config().cloud_name:
        cloudinary.reset_config()

    cfg = cloudinary.config()
    if not (cfg.cloud_name and cfg.api_key and cfg.api_secret):
        raise ConfigError(
            "Cloudinary não configurado (CLOUDINARY_URL ou CLOUDINARY_CLOUD_NAME / CLOUDINARY_API_KEY / CLOUDINARY_API_SECRET)."
        )


def public_id_for(url: str) -> str:
    return hashlib.md5((url or "").encode("utf-8")).hexdigest()


def choose_mime(url: str, *, hint: Optional[str], content_type: Optional[str], head: bytes) -> str:
    if is_encrypted_whatsapp_audio(url):
        return "audio/ogg"
    for candidate in (hint, content_type):
        mt = (candidate or "").split(";")[0].strip().lower()
        if mt and mt != "application/octet-stream":
            return mt
    sniffed = sniff_mime_from_bytes(head)
    if sniffed:
        return sniffed
    return determine_mime_type(url, detect_media_type(url))


def upload_options(url: str, mime: str) -> dict[str, Any]:
    ext = extension_for_mime(mime)
    options: dict[str, Any] = {
        "resource_type": cloudinary_resource_type(mime),
        "folder": CLOUDINARY_FOLDER,
        "public_id": public_id_for(url),
        "overwrite": True,
    }
    if ext != ".bin":
        options["format"] = ext.lstrip(".")
    if mime.startswith("audio/"):
        options.update(resource_type="video", audio_codec="mp3", bit_rate="128k", format="mp3")
    elif mime.startswith("video/"):
        options.update(video_codec="h264", audio_codec="aac")
    elif mime.startswith("image/"):
        options.update(quality="auto:good")
    return options


class CloudinaryMediaPipeline:
    """Baixa uma mídia do WhatsApp, envia ao Cloudinary e memoiza a URL segura.

    Não há deduplicação de uploads simultâneos da mesma URL: os dois terminam
    com o mesmo public_id e a última escrita no cache vence.
    """

    def __init__(
        self,
        *,
        cache: MediaUrlCache,
        obs: Observability,
        evolution: Optional[EvolutionAccess] = None,
        downloader: Optional[Downloader] = None,
        uploader: Optional[Uploader] = None,
        configure: Callable[[], None] = configure_cloudinary,
    ):
        self._cache = cache
        self._obs = obs
        self._evolution = evolution
        self._download = downloader or download_bytes
        self._upload = uploader or cloudinary.uploader.upload
        self._configure = configure

    def _headers_for(self, url: str, api_key: Optional[str]) -> dict[str, str]:
        headers = dict(BROWSER_HEADERS)
        token = api_key
        if not token and self._evolution and self._evolution.api_key:
            host = (urlsplit(url).hostname or "").lower()
            if host and host == self._evolution.host:
                token = self._evolution.api_key
        if token:
            headers["apikey"] = token
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def upload(
        self,
        media_url: str,
        mime_hint: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        ctx: Optional[LogContext] = None,
    ) -> str:
        cached = self._cache.get(media_url)
        if cached:
            self._obs.debug("cloudinary.cache_hit", ctx=ctx, url=media_url)
            return cached

        self._configure()
        media = await self._download(media_url, headers=self._headers_for(media_url, api_key), timeout_s=30.0)
        mime = choose_mime(media_url, hint=mime_hint, content_type=media.content_type, head=media.content[:32])
        options = upload_options(media_url, mime)

        staged = _stage_file(media.content, extension_for_mime(mime))
        try:
            self._obs.info(
                "cloudinary.upload.start",
                ctx=ctx,
                mime=mime,
                resource_type=options["resource_type"],
                bytes=len(media.content),
            )
            try:
                result = await asyncio.to_thread(self._upload, staged, **options)
            except Exception as e:
                self._obs.error("cloudinary.upload.failed", ctx=ctx, url=media_url, error=str(e))
                raise MediaUploadError("Falha no upload para o Cloudinary.", details={"error": str(e)})
        finally:
            _remove_quietly(staged)

        secure_url = (result or {}).get("secure_url") if isinstance(result, dict) else None
        if not secure_url:
            raise MediaUploadError("Cloudinary não retornou secure_url.", details={"result": str(result)[:500]})

        self._cache.set(media_url, secure_url)
        self._obs.info("cloudinary.upload.done", ctx=ctx, public_id=options["public_id"])
        return secure_url


def _stage_file(content: bytes, ext: str) -> str:
    """Grava os bytes em um arquivo temporário e renomeia com a extensão final."""
    fd, raw_path = tempfile.mkstemp(prefix="whatsapp-media-", suffix=".tmp")
    final_path = raw_path[: -len(".tmp")] + ext
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(raw_path, final_path)
    except OSError:
        _remove_quietly(raw_path)
        _remove_quietly(final_path)
        raise
    return final_path


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
