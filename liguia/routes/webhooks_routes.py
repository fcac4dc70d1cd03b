"""
Receptor de webhooks da Evolution API.

- POST /evolution-webhook/{instance} - Evento da instância (sem JWT; a instância
  identifica o usuário pelo username)
- GET /evolution-webhook/{instance} - Verificação do endpoint
"""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from ..evolution_api import parse_webhook_message
from ..whatsapp.errors import WhatsAppError
from ..whatsapp.observability import LogContext
from .deps import error_to_http, get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/evolution-webhook", tags=["Webhooks"])


@router.post("/{instance}")
async def receive_evolution_webhook(instance: str, request: Request):
    try:
        try:
            body: Any = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="JSON inválido")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Payload de webhook inválido")

        container = get_container()
        user = container.credentials.resolve_user_by_instance(instance)
        if not user:
            logger.error(f"Usuário não encontrado para a instância: {instance}")
            raise HTTPException(status_code=404, detail="Usuário não encontrado")

        user_id = str(user.get("id"))
        ctx = LogContext(user_id=user_id, instance_name=instance)
        event = parse_webhook_message(body)
        container.obs.info("webhook.received", ctx=ctx, kind=event.get("event"))

        response: dict[str, Any] = {"success": True, "event": event.get("event")}
        status = container.statuses.apply_event(user_id, event)
        if status is not None:
            response["status"] = status.as_dict()

        if event.get("event") == "message" and event.get("media_url"):
            try:
                resolved = await container.resolver.resolve(
                    event["media_url"],
                    event.get("mimetype"),
                    event.get("type"),
                    ctx=ctx,
                )
                response["media"] = resolved.as_dict()
            except WhatsAppError as e:
                # O evento já foi aceito; mídia sem URL resolvida não derruba o webhook.
                container.obs.warning("webhook.media.unresolved", ctx=ctx, code=e.code, error=e.message)
                response["media"] = None
        return response
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/{instance}")
async def verify_evolution_webhook(instance: str):
    return {"success": True, "message": "Endpoint de webhook operacional", "instance": instance}
