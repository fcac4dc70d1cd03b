"""
Helpers de acesso ao banco (Supabase) usados pelo resolvedor de credenciais e
pelas rotas de configurações.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "temporarily unavailable",
    "connection refused",
    "connection reset",
    "connection error",
    "network",
    "name or service not known",
    "failed to establish a new connection",
    "server disconnected",
    "502",
    "503",
    "504",
    "bad gateway",
    "gateway timeout",
    "service unavailable",
)


def is_transient_db_error(exc: Exception) -> bool:
    """True quando vale a pena repetir a chamada."""
    s = str(exc or "").lower()
    return any(m in s for m in _TRANSIENT_MARKERS)


def is_supabase_not_configured_error(exc: Exception) -> bool:
    s = str(exc or "").lower()
    return "supabase não configurado" in s or "supabase nao configurado" in s


def db_call_with_retry(op_name: str, fn: Callable[[], Any], max_attempts: int = 4) -> Any:
    """
    Executa `fn` repetindo em erros transitórios, com backoff exponencial curto.

    Dentro de um event loop não há repetição: `time.sleep` bloquearia o loop
    inteiro, então a primeira falha já propaga.
    """
    try:
        asyncio.get_running_loop()
        max_attempts = 1
    except RuntimeError:
        pass

    last_exc: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except Exception as e:
            last_exc = e
            if attempt >= max_attempts or not is_transient_db_error(e):
                raise
            logger.warning(f"{op_name} falhou (tentativa {attempt}/{max_attempts}): {e}")
            time.sleep(min(2.0, 0.15 * (2 ** (attempt - 1))))
    raise last_exc or RuntimeError(f"{op_name} falhou")


def first_row(result: Any) -> Optional[dict]:
    """Primeira linha de um resultado do postgrest, ou None."""
    rows = getattr(result, "data", None)
    if isinstance(rows, list) and rows:
        row = rows[0]
        return row if isinstance(row, dict) else None
    if isinstance(rows, dict):
        return rows
    return None
