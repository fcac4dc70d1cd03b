"""
Dependências compartilhadas pelas rotas do gateway WhatsApp.
"""

import logging
from typing import Tuple

from fastapi import HTTPException

from ..evolution_api import EvolutionAPI
from ..utils.auth_helpers import user_id_from_payload
from ..whatsapp.container import GatewayContainer, get_gateway_container
from ..whatsapp.credentials import ServerCredentials
from ..whatsapp.errors import (
    AuthError,
    ConfigError,
    ConnectionError,
    CredentialsNotFoundError,
    EndpointsExhaustedError,
    IncompleteCredentialsError,
    MediaDownloadError,
    MediaUploadError,
    ProviderRequestError,
    WhatsAppError,
)
from ..whatsapp.observability import LogContext

logger = logging.getLogger(__name__)


def get_container() -> GatewayContainer:
    return get_gateway_container()


def error_to_http(e: Exception) -> HTTPException:
    """Converte exceções do gateway em HTTPException com mensagem em português."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, CredentialsNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, IncompleteCredentialsError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, AuthError):
        return HTTPException(status_code=401, detail=e.message)
    if isinstance(e, EndpointsExhaustedError):
        return HTTPException(
            status_code=503,
            detail="Não foi possível obter dados do WhatsApp. Verifique a conexão do WhatsApp.",
        )
    if isinstance(e, MediaDownloadError):
        if e.status_code == 404:
            return HTTPException(status_code=404, detail="Mídia não encontrada")
        if e.status_code and e.status_code >= 400:
            return HTTPException(status_code=e.status_code, detail=e.message)
        if e.transient:
            return HTTPException(status_code=503, detail="Servidor de mídia indisponível")
        return HTTPException(status_code=500, detail=e.message)
    if isinstance(e, MediaUploadError):
        return HTTPException(status_code=502, detail=f"Erro ao processar mídia: {e.message}")
    if isinstance(e, ConnectionError):
        return HTTPException(status_code=503, detail=e.message)
    if isinstance(e, ProviderRequestError):
        if e.status_code == 404:
            return HTTPException(status_code=404, detail="Recurso não encontrado no provedor")
        return HTTPException(status_code=502, detail=f"Erro do provedor: {e.message}")
    if isinstance(e, ConfigError):
        return HTTPException(status_code=500, detail=f"Erro de configuração: {e.message}")
    if isinstance(e, WhatsAppError):
        return HTTPException(status_code=500, detail=e.message)
    logger.exception(f"Erro inesperado: {e}")
    return HTTPException(status_code=500, detail=f"Erro interno: {str(e)[:200]}")


def resolve_server(payload: dict) -> Tuple[GatewayContainer, ServerCredentials, LogContext]:
    container = get_container()
    user_id = user_id_from_payload(payload)
    creds = container.credentials.resolve(user_id)
    ctx = LogContext(user_id=user_id, server_id=creds.server_id, instance_name=creds.instance_id)
    return container, creds, ctx


def evolution_for(payload: dict) -> EvolutionAPI:
    container, creds, ctx = resolve_server(payload)
    return EvolutionAPI(creds, container.prober, ctx=ctx)
