"""
Rotas de configuração da Meta Cloud API do usuário:
- GET /settings/meta - Configuração atual (token mascarado)
- PUT /settings/meta - Atualiza a configuração
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from ..models import MetaSettingsUpdate
from ..utils.auth_helpers import user_id_from_payload, verify_token
from ..utils.db_helpers import db_call_with_retry, first_row, is_supabase_not_configured_error
from ..whatsapp.credentials import repair_meta_credentials, MetaCredentials
from .deps import error_to_http, get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["Settings"])

META_COLUMNS = (
    "whatsapp_meta_token",
    "whatsapp_meta_business_id",
    "whatsapp_meta_api_version",
    "whatsapp_meta_phone_number_id",
)


def mask_token(token: str) -> str:
    if not token:
        return ""
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


def _public_settings(row: dict) -> dict:
    token = str(row.get("whatsapp_meta_token") or "")
    creds = MetaCredentials(
        token=token,
        business_id=str(row.get("whatsapp_meta_business_id") or ""),
        api_version=str(row.get("whatsapp_meta_api_version") or "") or "v18.0",
        phone_number_id=str(row.get("whatsapp_meta_phone_number_id") or ""),
    )
    return {
        "whatsapp_meta_token": mask_token(token),
        "whatsapp_meta_business_id": creds.business_id,
        "whatsapp_meta_api_version": creds.api_version,
        "whatsapp_meta_phone_number_id": creds.phone_number_id,
        "configured": bool(token and creds.business_id),
        "valuesLikelySwapped": repair_meta_credentials(creds).values_swapped,
    }


def _db_failure(e: Exception) -> HTTPException:
    if is_supabase_not_configured_error(e):
        return HTTPException(status_code=503, detail="Banco de dados não configurado")
    return error_to_http(e)


@router.get("/meta")
async def get_meta_settings(payload: dict = Depends(verify_token)):
    user_id = user_id_from_payload(payload)
    client = get_container().credentials.client
    try:
        result = db_call_with_retry(
            "settings.get",
            lambda: client.table("settings").select(", ".join(META_COLUMNS)).eq("user_id", user_id).limit(1).execute(),
        )
    except Exception as e:
        raise _db_failure(e)
    row = first_row(result) or {}
    return {"success": True, "settings": _public_settings(row)}


@router.put("/meta")
async def update_meta_settings(request: MetaSettingsUpdate, payload: dict = Depends(verify_token)):
    user_id = user_id_from_payload(payload)
    updates = {k: v.strip() for k, v in request.model_dump(exclude_none=True).items()}
    if not updates:
        raise HTTPException(status_code=400, detail="Nenhum campo para atualizar")

    client = get_container().credentials.client
    try:
        existing = first_row(
            db_call_with_retry(
                "settings.get",
                lambda: client.table("settings").select(", ".join(META_COLUMNS)).eq("user_id", user_id).limit(1).execute(),
            )
        ) or {}
        merged = {**{k: existing.get(k) or "" for k in META_COLUMNS}, **updates}

        repaired = repair_meta_credentials(
            MetaCredentials(
                token=merged["whatsapp_meta_token"],
                business_id=merged["whatsapp_meta_business_id"],
                api_version=merged["whatsapp_meta_api_version"] or "v18.0",
                phone_number_id=merged["whatsapp_meta_phone_number_id"],
            )
        )
        if repaired.repairs:
            logger.warning(f"Configuração Meta ajustada ao salvar para {user_id}: {', '.join(repaired.repairs)}")
        row = {
            "user_id": user_id,
            "whatsapp_meta_token": repaired.token,
            "whatsapp_meta_business_id": repaired.business_id,
            "whatsapp_meta_api_version": repaired.api_version,
            "whatsapp_meta_phone_number_id": repaired.phone_number_id,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        db_call_with_retry(
            "settings.upsert",
            lambda: client.table("settings").upsert(row, on_conflict="user_id").execute(),
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _db_failure(e)

    return {"success": True, "settings": _public_settings(row), "repairs": list(repaired.repairs)}
