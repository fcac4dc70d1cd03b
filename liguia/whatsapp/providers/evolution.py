"""Catálogo de endpoints da Evolution API.

Servidores Evolution em produção rodam versões diferentes e os caminhos mudaram
entre releases, então cada operação lista as variantes conhecidas em ordem de
prioridade. O prober tenta uma por vez.
"""
from __future__ import annotations

from .base import ApiAdapter, operation

EVOLUTION_V2 = ApiAdapter(
    adapter_id="evolution",
    version="v2",
    operations={
        spec.name: spec
        for spec in (
            operation(
                "fetch_contacts",
                10.0,
                "GET /instance/fetchContacts/{instance}",
                "GET /instance/getAllContacts/{instance}",
                "POST /chat/findContacts/{instance}",
                body={},
            ),
            operation(
                "direct_contacts",
                10.0,
                "GET /instance/fetchContacts/{instance}",
                "GET /instance/getContacts/{instance}",
                "GET /chat/fetchContacts/{instance}",
                "GET /chat/getAllContacts/{instance}",
                "GET /instances/{instance}/contacts",
                "GET /instance/{instance}/contacts",
                "GET /instance/contacts/{instance}",
                "GET /instance/chats/{instance}",
                "GET /chat/contacts/{instance}",
            ),
            operation(
                "fetch_chats",
                10.0,
                "POST /chat/findChats/{instance}",
                "GET /instances/{instance}/contacts",
                body={},
            ),
            operation("fetch_messages", 15.0, "POST /chat/findMessages/{instance}"),
            operation(
                "fetch_qrcode",
                15.0,
                "GET /instance/connect/{instance}",
                "GET /instance/qrcode/{instance}",
                "GET /api/v1/instance/qrcode/{instance}",
                "GET /v1/instance/qrcode/{instance}",
                "GET /instances/{instance}/qrcode",
                "GET /qrcode/{instance}",
            ),
            operation("connection_state", 5.0, "GET /instance/connectionState/{instance}"),
            # Envio e base64 respondem 201 Created.
            operation("send_text", 15.0, "POST /message/sendText/{instance}", ok_statuses=(200, 201)),
            operation(
                "media_base64",
                15.0,
                "POST /chat/getBase64FromMediaMessage/{instance}",
                ok_statuses=(200, 201),
            ),
        )
    },
)
