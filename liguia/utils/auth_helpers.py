"""
Verificação do JWT emitido pelo serviço de login do CRM.

O login em si vive fora deste backend; aqui só validamos o token que chega
no header Authorization (ou no cookie access_token) e extraímos o usuário.
"""

import logging
import os
from datetime import datetime
from typing import Any, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = logging.getLogger(__name__)

JWT_SECRET = (
    os.getenv("JWT_SECRET")
    or os.getenv("APP_JWT_SECRET")
    or "liguia-crm-dev-secret"
).strip()

security = HTTPBearer(auto_error=False)


def create_token(user_id: Any, username: str, role: str = "user", ttl_s: int = 86400 * 7) -> str:
    payload = {
        "user_id": str(user_id),
        "username": username,
        "role": role,
        "exp": datetime.utcnow().timestamp() + ttl_s,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def verify_token(http_request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    token = credentials.credentials if credentials else None
    if not token:
        token = http_request.cookies.get("access_token")
    if not token:
        raise HTTPException(status_code=401, detail="Token não fornecido")
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token inválido")


def user_id_from_payload(payload: dict) -> str:
    """ID do usuário autenticado; tokens antigos usam `sub` ou `id`."""
    user_id: Optional[Any] = payload.get("user_id") or payload.get("sub") or payload.get("id")
    if user_id in (None, ""):
        raise HTTPException(status_code=401, detail="Token sem identificação de usuário")
    return str(user_id)
