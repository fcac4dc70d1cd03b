"""
Utilitários compartilhados do backend LiguIA.
"""

from .db_helpers import (
    db_call_with_retry,
    first_row,
    is_supabase_not_configured_error,
    is_transient_db_error,
)
from .auth_helpers import (
    JWT_SECRET,
    create_token,
    security,
    user_id_from_payload,
    verify_token,
)
from .phone_utils import (
    digits_only,
    extract_phone_from_jid,
    is_broadcast_jid,
    is_group_jid,
)

__all__ = [
    "db_call_with_retry",
    "first_row",
    "is_supabase_not_configured_error",
    "is_transient_db_error",
    "JWT_SECRET",
    "create_token",
    "security",
    "user_id_from_payload",
    "verify_token",
    "digits_only",
    "extract_phone_from_jid",
    "is_broadcast_jid",
    "is_group_jid",
]
