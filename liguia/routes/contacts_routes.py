"""
Rotas de chat apoiadas na Evolution API:
- GET /chat/contacts-fix - Contatos, checando a conexão antes
- GET /chat/direct-contacts - Contatos pela lista longa de endpoints históricos
- GET /chat/chats - Conversas normalizadas
- GET /chat/messages/{remote_jid} - Mensagens normalizadas de uma conversa
- POST /chat/send - Envia mensagem de texto
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from ..models import SendTextRequest
from ..utils.auth_helpers import verify_token
from ..whatsapp.errors import AuthError, ConnectionError, EndpointsExhaustedError
from .deps import error_to_http, evolution_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.get("/contacts-fix")
async def contacts_fix(payload: dict = Depends(verify_token)):
    try:
        api = evolution_for(payload)
        try:
            state = await api.connection_state()
        except (EndpointsExhaustedError, ConnectionError) as e:
            logger.warning(f"Estado da conexão indisponível para {api.instance}: {e}")
            state = {"connected": False, "state": ""}
        if not state["connected"]:
            return {
                "success": False,
                "message": "WhatsApp não está conectado. Escaneie o QR code primeiro.",
                "state": state.get("state"),
            }

        result = await api.fetch_contacts()
        contacts = result["contacts"]
        return {
            "success": True,
            "contacts": contacts,
            "total": len(contacts),
            "method": result["endpoint"],
        }
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/direct-contacts")
async def direct_contacts(payload: dict = Depends(verify_token)):
    try:
        api = evolution_for(payload)
        result = await api.fetch_direct_contacts()
        contacts = result["contacts"]
        return {
            "success": True,
            "contacts": contacts,
            "metadata": {"total": len(contacts), "source": result["endpoint"]},
        }
    except EndpointsExhaustedError:
        raise HTTPException(
            status_code=503,
            detail="Não foi possível obter contatos do WhatsApp. Verifique a conexão do WhatsApp.",
        )
    except AuthError as e:
        raise HTTPException(status_code=401, detail=e.message)
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/chats")
async def list_chats(payload: dict = Depends(verify_token)):
    try:
        api = evolution_for(payload)
        chats = await api.fetch_chats()
        return {"success": True, "chats": chats, "total": len(chats)}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/messages/{remote_jid}")
async def list_messages(
    remote_jid: str,
    limit: int = Query(50, ge=1, le=500),
    payload: dict = Depends(verify_token),
):
    try:
        api = evolution_for(payload)
        messages = await api.fetch_messages(remote_jid, limit=limit)
        return {"success": True, "messages": messages, "total": len(messages)}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.post("/send")
async def send_text(request: SendTextRequest, payload: dict = Depends(verify_token)):
    try:
        api = evolution_for(payload)
        result = await api.send_text(request.phone, request.message)
        return {"success": True, "data": result["data"], "endpoint": result["endpoint"]}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)
