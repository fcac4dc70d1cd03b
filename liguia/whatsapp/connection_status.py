from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional

from .observability import LogContext, Observability


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool = False
    connecting: bool = False
    qr_code: Optional[str] = None
    source: str = "evolution-webhook"
    name: Optional[str] = None
    phone: Optional[str] = None
    last_updated: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        d = asdict(self)
        return {
            "connected": d["connected"],
            "connecting": d["connecting"],
            "qrCode": d["qr_code"],
            "source": d["source"],
            "name": d["name"],
            "phone": d["phone"],
            "lastUpdated": d["last_updated"],
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionStatusStore:
    """Último estado de conexão conhecido por usuário, alimentado pelo webhook.

    Vive só em memória; um restart volta tudo para "desconectado" até o
    próximo evento da Evolution.
    """

    def __init__(self, obs: Observability):
        self._obs = obs
        self._by_user: dict[str, ConnectionStatus] = {}

    def get(self, user_id: Any) -> ConnectionStatus:
        return self._by_user.get(str(user_id), ConnectionStatus())

    def apply_event(self, user_id: Any, event: dict[str, Any]) -> Optional[ConnectionStatus]:
        """Atualiza o estado a partir de um evento já passado por parse_webhook_message."""
        uid = str(user_id)
        kind = event.get("event")
        current = self._by_user.get(uid)
        ctx = LogContext(user_id=uid, instance_name=event.get("instance"))

        if kind == "qrcode" and event.get("qrcode"):
            status = ConnectionStatus(connected=False, connecting=True, qr_code=event["qrcode"], last_updated=_now())
        elif kind == "connection" and event.get("state") == "open":
            raw = event.get("raw_data") if isinstance(event.get("raw_data"), dict) else {}
            status = ConnectionStatus(
                connected=True,
                connecting=False,
                name=raw.get("name") or (current.name if current else None),
                phone=raw.get("phone") or (current.phone if current else None),
                last_updated=_now(),
            )
        elif kind == "connection" and event.get("state") == "close":
            status = ConnectionStatus(connected=False, connecting=False, last_updated=_now())
        elif kind == "connection" and event.get("state") == "connecting":
            base = current or ConnectionStatus()
            status = replace(base, connected=False, connecting=True, last_updated=_now())
        else:
            return None

        self._by_user[uid] = status
        self._obs.info("connection.status.updated", ctx=ctx, connected=status.connected, connecting=status.connecting)
        return status

    def clear(self) -> None:
        self._by_user.clear()
