"""
Rotas da Meta Cloud API (WhatsApp Business oficial):
- POST /meta-direct-send - Envia template aprovado
- GET /meta-direct-templates - Lista templates do negócio
- GET /meta-analytics - Métricas de conversas no período
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from ..models import MetaDirectSendRequest
from ..utils.auth_helpers import user_id_from_payload, verify_token
from ..whatsapp.errors import ProviderRequestError
from ..whatsapp.meta_api import MetaCloudAPI, diagnose_meta_error
from .deps import error_to_http, get_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Meta"])


def _meta_client(payload: dict) -> MetaCloudAPI:
    container = get_container()
    creds = container.credentials.resolve_meta(user_id_from_payload(payload))
    return MetaCloudAPI(creds, obs=container.obs)


def _meta_failure(api: MetaCloudAPI, e: ProviderRequestError) -> JSONResponse:
    body = (e.details or {}).get("body")
    diagnosis = diagnose_meta_error(e.status_code, body, api.creds)
    logger.warning(f"Erro da Meta API ({diagnosis['code']}): {diagnosis['message']}")
    return JSONResponse(
        status_code=e.status_code or 500,
        content={
            "success": False,
            "error": diagnosis["message"],
            "suggestedFix": diagnosis["suggestedFix"],
            "details": diagnosis,
        },
    )


@router.post("/meta-direct-send")
async def meta_direct_send(request: MetaDirectSendRequest, payload: dict = Depends(verify_token)):
    try:
        api = _meta_client(payload)
        if not api.creds.phone_number_id:
            raise HTTPException(status_code=400, detail="ID do número de telefone não configurado")
        try:
            result = await api.send_template(
                request.to,
                request.templateName,
                language=request.language,
                components=request.components,
            )
        except ProviderRequestError as e:
            return _meta_failure(api, e)
        return {"success": True, "messageId": result["messageId"], "data": result["response"]}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/meta-direct-templates")
async def meta_direct_templates(
    approved_only: bool = Query(True, alias="approvedOnly"),
    payload: dict = Depends(verify_token),
):
    try:
        api = _meta_client(payload)
        try:
            templates = await api.list_templates(approved_only=approved_only)
        except ProviderRequestError as e:
            return _meta_failure(api, e)
        return {"success": True, "templates": templates, "total": len(templates)}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)


@router.get("/meta-analytics")
async def meta_analytics(
    start: str = Query(...),
    end: str = Query(...),
    granularity: Optional[str] = Query("DAY"),
    payload: dict = Depends(verify_token),
):
    try:
        api = _meta_client(payload)
        try:
            analytics = await api.fetch_analytics(start, end, granularity or "DAY")
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ProviderRequestError as e:
            return _meta_failure(api, e)
        return {"success": True, "analytics": analytics}
    except HTTPException:
        raise
    except Exception as e:
        raise error_to_http(e)
