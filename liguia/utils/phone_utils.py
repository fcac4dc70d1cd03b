"""
Telefones e JIDs do WhatsApp.
"""

from typing import Any

GROUP_SUFFIX = "@g.us"
BROADCAST_JID = "status@broadcast"


def digits_only(value: Any) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


def extract_phone_from_jid(jid: Any) -> str:
    """'5511999999999@s.whatsapp.net' -> '5511999999999'"""
    if not jid:
        return ""
    return digits_only(str(jid).split("@")[0].split(":")[0])


def is_group_jid(jid: Any) -> bool:
    return str(jid or "").endswith(GROUP_SUFFIX)


def is_broadcast_jid(jid: Any) -> bool:
    return str(jid or "") == BROADCAST_JID
