"""
Diagnóstico de contatos: testa a conexão e todos os endpoints conhecidos.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from ..evolution_api import EvolutionAPI
from ..utils.auth_helpers import verify_token
from ..whatsapp.errors import WhatsAppError
from .deps import error_to_http, resolve_server

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/diagnostics", tags=["Diagnostics"])

_PROBED_OPERATIONS = ("fetch_contacts", "direct_contacts", "fetch_chats")


@router.get("/contacts")
async def diagnose_contacts(payload: dict = Depends(verify_token)):
    try:
        container, creds, ctx = resolve_server(payload)
        api = EvolutionAPI(creds, container.prober, ctx=ctx)

        try:
            state = await api.connection_state()
            connection = {"ok": True, "connected": state["connected"], "state": state["state"]}
        except WhatsAppError as e:
            connection = {"ok": False, "connected": False, "error": e.message, "code": e.code}

        endpoints = {}
        for operation in _PROBED_OPERATIONS:
            endpoints[operation] = await container.prober.probe_all(operation, creds, ctx=ctx)

        return {
            "success": True,
            "diagnostics": {
                "server": creds.sanitized(),
                "connection": connection,
                "endpoints": endpoints,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)
