import logging
import os
from typing import Any, Optional, cast

from supabase import Client, create_client

logger = logging.getLogger(__name__)

_NOT_CONFIGURED = "Supabase não configurado (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY)."


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


class _SupabaseNotConfigured:
    """Placeholder que só falha quando alguém tenta usar o banco."""

    def table(self, *_args: Any, **_kwargs: Any):
        raise RuntimeError(_NOT_CONFIGURED)

    def rpc(self, *_args: Any, **_kwargs: Any):
        raise RuntimeError(_NOT_CONFIGURED)


def build_client() -> Client:
    url = _first_env("SUPABASE_URL")
    key = _first_env("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_KEY", "SUPABASE_KEY")
    if url and key:
        return create_client(url, key)
    logger.warning("Supabase não configurado: defina SUPABASE_URL e SUPABASE_SERVICE_ROLE_KEY.")
    return cast(Client, _SupabaseNotConfigured())


supabase: Client = build_client()
