"""
Rotas de mídia:
- GET /media-proxy - Baixa a mídia do WhatsApp e devolve os bytes
- GET /audio-proxy - Áudio cifrado (.enc), decifrado pela Evolution quando possível
- GET /media/resolve - URL navegável para uma mídia
- GET /media/cloudinary - Envia a mídia ao Cloudinary e devolve a URL segura
"""

import base64
import binascii
import logging
from typing import Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from ..evolution_api import EvolutionAPI
from ..media.cloudinary_pipeline import BROWSER_HEADERS
from ..media.detection import detect_media_kind, determine_mime_type
from ..utils.auth_helpers import user_id_from_payload, verify_token
from ..whatsapp.credentials import ServerCredentials
from ..whatsapp.errors import CredentialsNotFoundError, IncompleteCredentialsError, WhatsAppError
from ..whatsapp.http import download_bytes
from ..whatsapp.observability import LogContext
from .deps import error_to_http, get_container, resolve_server

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Media"])

_GENERIC_TYPES = {"", "application/octet-stream", "binary/octet-stream"}
_CACHE_HEADERS = {"Cache-Control": "public, max-age=86400", "Access-Control-Allow-Origin": "*"}


def _optional_server(payload: dict) -> Optional[ServerCredentials]:
    """Credenciais do usuário, se houver; mídia pública do CDN baixa sem elas."""
    try:
        _, creds, _ = resolve_server(payload)
    except (CredentialsNotFoundError, IncompleteCredentialsError) as e:
        logger.info(f"Proxy de mídia sem credenciais de servidor: {e}")
        return None
    return creds


def _is_server_url(url: str, creds: Optional[ServerCredentials]) -> bool:
    if not creds or not creds.api_url:
        return False
    host = (urlsplit(url).hostname or "").lower()
    return bool(host) and host == (urlsplit(creds.api_url).hostname or "").lower()


def _download_headers(url: str, creds: Optional[ServerCredentials]) -> dict:
    """Headers do navegador; o token do servidor só vai para o host da Evolution."""
    headers = dict(BROWSER_HEADERS)
    if creds and creds.api_token and _is_server_url(url, creds):
        headers["apikey"] = creds.api_token
        headers["Authorization"] = f"Bearer {creds.api_token}"
    return headers


def _pick_content_type(
    url: str,
    declared: Optional[str],
    upstream: str,
    media_type: Optional[str],
    head: bytes = b"",
) -> str:
    for candidate in (declared, upstream):
        ct = (candidate or "").split(";")[0].strip().lower()
        if ct not in _GENERIC_TYPES:
            return ct
    detected = detect_media_kind(filename=urlsplit(url).path, head_bytes=head)
    if detected.kind != "unknown":
        return detected.mime_type
    return determine_mime_type(url, media_type)


@router.get("/media-proxy")
async def media_proxy(
    url: str = Query(..., min_length=1),
    type: Optional[str] = None,
    mimetype: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    try:
        creds = _optional_server(payload)
        media = await download_bytes(url, headers=_download_headers(url, creds), timeout_s=30.0)
        content_type = _pick_content_type(url, mimetype, media.content_type, type, media.content[:32])
        return Response(content=media.content, media_type=content_type, headers=_CACHE_HEADERS)
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/audio-proxy")
async def audio_proxy(
    url: Optional[str] = None,
    message_id: Optional[str] = None,
    remote_jid: Optional[str] = None,
    from_me: bool = False,
    payload: dict = Depends(verify_token),
):
    if not url and not message_id:
        raise HTTPException(status_code=400, detail="URL do áudio não fornecida")
    try:
        creds = _optional_server(payload)
        if message_id and creds:
            container = get_container()
            api = EvolutionAPI(creds, container.prober, ctx=LogContext(user_id=user_id_from_payload(payload)))
            try:
                data = await api.get_base64_from_media_message(message_id, remote_jid or "", from_me)
                audio = base64.b64decode(str(data.get("base64") or ""))
                return Response(content=audio, media_type="audio/ogg", headers=_CACHE_HEADERS)
            except (WhatsAppError, binascii.Error) as e:
                if not url:
                    raise
                logger.warning(f"Base64 do áudio indisponível, baixando direto: {e}")
        if not url:
            raise HTTPException(status_code=404, detail="Áudio não encontrado")
        media = await download_bytes(url, headers=_download_headers(url, creds), timeout_s=30.0)
        return Response(content=media.content, media_type="audio/ogg", headers=_CACHE_HEADERS)
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/media/resolve")
async def resolve_media(
    url: str = Query(..., min_length=1),
    mimetype: Optional[str] = None,
    type: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    try:
        container = get_container()
        resolved = await container.resolver.resolve(
            url,
            mimetype,
            type,
            ctx=LogContext(user_id=user_id_from_payload(payload)),
        )
        return {"success": True, **resolved.as_dict()}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/media/cloudinary")
async def cloudinary_media(
    url: str = Query(..., min_length=1),
    mimetype: Optional[str] = None,
    payload: dict = Depends(verify_token),
):
    try:
        creds = _optional_server(payload)
        container = get_container()
        secure_url = await container.pipeline.upload(
            url,
            mimetype,
            api_key=creds.api_token if _is_server_url(url, creds) else None,
            ctx=LogContext(user_id=user_id_from_payload(payload)),
        )
        return {"success": True, "url": secure_url, "originalUrl": url}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)
