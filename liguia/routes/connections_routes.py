"""
Rotas da conexão WhatsApp (QR code / Baileys via Evolution):
- GET /connection/state - Estado atual consultado na Evolution
- GET /connection/qrcode - QR code para parear a instância
- GET /connection/status - Último estado recebido por webhook
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..utils.auth_helpers import user_id_from_payload, verify_token
from .deps import error_to_http, evolution_for, get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connection", tags=["Connection"])


@router.get("/state")
async def connection_state(payload: dict = Depends(verify_token)):
    try:
        api = evolution_for(payload)
        state = await api.connection_state()
        return {"success": True, "connected": state["connected"], "state": state["state"], "data": state["raw"]}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/qrcode")
async def connection_qrcode(payload: dict = Depends(verify_token)):
    try:
        api = evolution_for(payload)
        result = await api.fetch_qrcode()
        return {"success": True, "qrCode": result["qrCode"], "endpoint": result["endpoint"]}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/status")
async def connection_status(payload: dict = Depends(verify_token)):
    user_id = user_id_from_payload(payload)
    status = get_container().statuses.get(user_id)
    return {"success": True, **status.as_dict()}
