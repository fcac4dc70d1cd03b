from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..utils.db_helpers import db_call_with_retry, first_row
from .errors import CredentialsNotFoundError, IncompleteCredentialsError

logger = logging.getLogger(__name__)

DEFAULT_META_API_VERSION = "v18.0"
DEFAULT_INSTANCE = "admin"


@dataclass(frozen=True)
class ServerCredentials:
    api_url: str
    api_token: str
    instance_id: str
    server_id: Optional[str] = None
    name: Optional[str] = None

    def sanitized(self) -> dict[str, Any]:
        token = self.api_token or ""
        return {
            "serverId": self.server_id,
            "name": self.name,
            "apiUrl": self.api_url,
            "instanceId": self.instance_id,
            "hasToken": bool(token),
            "tokenPreview": f"{token[:4]}..." if len(token) > 4 else "***",
        }


@dataclass(frozen=True)
class MetaCredentials:
    token: str
    business_id: str
    api_version: str = DEFAULT_META_API_VERSION
    phone_number_id: str = ""
    user_id: Optional[str] = None
    repairs: tuple[str, ...] = field(default=())

    @property
    def values_swapped(self) -> bool:
        return "token_business_id_swapped" in self.repairs


def _env(*names: str) -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return ""


def _is_numeric(value: str) -> bool:
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def repair_meta_credentials(creds: MetaCredentials) -> MetaCredentials:
    """Corrige combinações trocadas que aparecem com frequência na tela de configurações.

    Casos tratados, na ordem:
      * token e business id invertidos;
      * token colado no campo de versão da API;
      * business id não numérico com token numérico (inversão) ou versão numérica.
    Phone number id vazio herda o business id.
    """
    token = (creds.token or "").strip()
    business_id = (creds.business_id or "").strip()
    api_version = (creds.api_version or "").strip() or DEFAULT_META_API_VERSION
    phone_number_id = (creds.phone_number_id or "").strip()
    repairs: list[str] = list(creds.repairs)

    token_numeric = _is_numeric(token)
    business_numeric = _is_numeric(business_id)
    version_has_token = api_version.startswith("EAA") or len(api_version) > 50
    business_looks_like_token = len(business_id) > 50 or "EAA" in business_id
    token_looks_like_business = len(token) < 30 and token_numeric
    version_looks_like_business = not version_has_token and len(api_version) < 30 and _is_numeric(api_version)

    if business_looks_like_token and token_looks_like_business:
        token, business_id = business_id, token
        repairs.append("token_business_id_swapped")
    elif version_has_token:
        token, api_version = api_version, DEFAULT_META_API_VERSION
        repairs.append("token_in_api_version")
    elif not business_numeric:
        if token_looks_like_business:
            token, business_id = business_id, token
            repairs.append("token_business_id_swapped")
        elif version_looks_like_business:
            business_id, api_version = api_version, DEFAULT_META_API_VERSION
            repairs.append("business_id_in_api_version")

    if not phone_number_id:
        phone_number_id = business_id
        repairs.append("phone_number_id_from_business_id")

    return replace(
        creds,
        token=token,
        business_id=business_id,
        api_version=api_version,
        phone_number_id=phone_number_id,
        repairs=tuple(repairs),
    )


class CredentialResolver:
    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            from ..supabase_client import supabase

            self._client = supabase
        return self._client

    def resolve(self, user_id: Any) -> ServerCredentials:
        uid = str(user_id or "").strip()
        if not uid:
            raise CredentialsNotFoundError()
        result = db_call_with_retry(
            "credentials.user_servers",
            lambda: self.client.table("user_servers")
            .select("id, server_id, servers(id, name, api_url, api_token, instance_id)")
            .eq("user_id", uid)
            .limit(1)
            .execute(),
        )
        row = first_row(result)
        if not row:
            logger.info(f"Nenhum servidor configurado para o usuário {uid}")
            raise CredentialsNotFoundError()

        server = row.get("servers") or {}
        if isinstance(server, list):
            server = server[0] if server else {}

        api_url = (str(server.get("api_url") or "").strip() or _env("EVOLUTION_API_BASE_URL", "EVOLUTION_BASE_URL")).rstrip("/")
        api_token = str(server.get("api_token") or "").strip() or _env("EVOLUTION_API_KEY", "EVOLUTION_API_TOKEN")
        instance_id = str(server.get("instance_id") or "").strip() or DEFAULT_INSTANCE

        if not api_url or not api_token:
            raise IncompleteCredentialsError(
                "Configuração incompleta do servidor WhatsApp",
                details={"missing": [k for k, v in (("api_url", api_url), ("api_token", api_token)) if not v]},
            )

        server_id = row.get("server_id") or server.get("id")
        return ServerCredentials(
            api_url=api_url,
            api_token=api_token,
            instance_id=instance_id,
            server_id=str(server_id) if server_id is not None else None,
            name=server.get("name"),
        )

    def resolve_meta(self, user_id: Any = None) -> MetaCredentials:
        """Credenciais da Meta Cloud API do usuário, já com a correção de campos trocados."""
        columns = (
            "user_id, whatsapp_meta_token, whatsapp_meta_business_id, "
            "whatsapp_meta_api_version, whatsapp_meta_phone_number_id"
        )
        uid = str(user_id or "").strip()

        def query() -> Any:
            q = self.client.table("settings").select(columns)
            if uid:
                q = q.eq("user_id", uid)
            else:
                q = q.neq("whatsapp_meta_token", "").neq("whatsapp_meta_business_id", "").order("updated_at", desc=True)
            return q.limit(1).execute()

        row = first_row(db_call_with_retry("credentials.settings", query))
        if not row:
            raise CredentialsNotFoundError("Nenhuma configuração Meta encontrada")

        token = str(row.get("whatsapp_meta_token") or "").strip()
        business_id = str(row.get("whatsapp_meta_business_id") or "").strip()
        if not token or not business_id:
            raise IncompleteCredentialsError(
                "Configuração Meta incompleta: token e ID do negócio são obrigatórios",
            )
        creds = MetaCredentials(
            token=token,
            business_id=business_id,
            api_version=str(row.get("whatsapp_meta_api_version") or "").strip() or DEFAULT_META_API_VERSION,
            phone_number_id=str(row.get("whatsapp_meta_phone_number_id") or "").strip(),
            user_id=str(row.get("user_id")) if row.get("user_id") is not None else None,
        )
        repaired = repair_meta_credentials(creds)
        if repaired.repairs:
            logger.warning(f"Credenciais Meta ajustadas para o usuário {repaired.user_id}: {', '.join(repaired.repairs)}")
        return repaired

    def resolve_user_by_instance(self, instance: str) -> Optional[dict]:
        name = str(instance or "").strip()
        if not name:
            return None
        result = db_call_with_retry(
            "credentials.user_by_instance",
            lambda: self.client.table("users").select("id, username").eq("username", name).limit(1).execute(),
        )
        return first_row(result)
