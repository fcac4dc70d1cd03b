from __future__ import annotations

import importlib
import sys
from pathlib import Path
from unittest import mock

import pytest
from fastapi.testclient import TestClient


def _ensure_backend_on_path() -> None:
    here = Path(__file__).resolve()
    backend_dir = here.parent.parent
    root = backend_dir.parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


TOKEN = "EAA" + "x" * 120


class _Result:
    def __init__(self, data=None):
        self.data = data


class _Query:
    def __init__(self, handler):
        self._handler = handler
        self._ops = []

    def select(self, *args, **kwargs):
        self._ops.append(("select", args, kwargs))
        return self

    def eq(self, field, value):
        self._ops.append(("eq", field, value))
        return self

    def limit(self, n):
        self._ops.append(("limit", n))
        return self

    def upsert(self, data, **kwargs):
        self._ops.append(("upsert", data, kwargs))
        return self

    def execute(self):
        return self._handler(self._ops)


class _SupabaseStub:
    def __init__(self, table_handler):
        self._table_handler = table_handler

    def table(self, name):
        return _Query(lambda ops: self._table_handler(name, ops))


class _FakeCredentials:
    """CredentialResolver sem banco: um usuário com servidor e configuração Meta."""

    def __init__(self, client=None, has_server=True):
        creds_mod = importlib.import_module("liguia.whatsapp.credentials")
        self._creds_mod = creds_mod
        self.client = client
        self.has_server = has_server

    def resolve(self, user_id):
        errors_mod = importlib.import_module("liguia.whatsapp.errors")
        if not self.has_server:
            raise errors_mod.CredentialsNotFoundError()
        return self._creds_mod.ServerCredentials(
            api_url="https://evo.example.com",
            api_token="tok",
            instance_id="loja",
            server_id="srv1",
            name="Principal",
        )

    def resolve_meta(self, user_id=None):
        return self._creds_mod.MetaCredentials(
            token=TOKEN,
            business_id="111222333",
            api_version="v18.0",
            phone_number_id="444555666",
            user_id=str(user_id),
        )

    def resolve_user_by_instance(self, instance):
        if instance == "loja":
            return {"id": "u1", "username": "loja"}
        return None


@pytest.fixture
def app_client(monkeypatch):
    _ensure_backend_on_path()
    for name in ("LIGUIA_ENDPOINTS_CONFIG_INLINE", "LIGUIA_ENDPOINTS_CONFIG", "MEDIA_RESOLVER_MODE"):
        monkeypatch.delenv(name, raising=False)

    server = importlib.import_module("liguia.server")
    deps = importlib.import_module("liguia.routes.deps")
    container_mod = importlib.import_module("liguia.whatsapp.container")
    auth_helpers = importlib.import_module("liguia.utils.auth_helpers")

    fake = _FakeCredentials()
    container = container_mod.GatewayContainer.build(credentials=fake)
    monkeypatch.setattr(deps, "get_gateway_container", lambda: container)
    server.app.dependency_overrides[auth_helpers.verify_token] = lambda: {"user_id": "u1", "username": "loja"}
    try:
        yield TestClient(server.app), container, fake
    finally:
        server.app.dependency_overrides.clear()


def _evolution(by_path):
    http_mod = importlib.import_module("liguia.whatsapp.http")

    async def send(method, path, *, json=None, timeout_s=None):
        status, payload = by_path.get(path, (404, None))
        return http_mod.HttpResult(status_code=status, payload=payload, url=path)

    return mock.patch.object(http_mod.HttpClient, "send", side_effect=send)


def test_health(app_client) -> None:
    client, _, _ = app_client
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/api/health").status_code == 200


def test_missing_token_is_rejected() -> None:
    _ensure_backend_on_path()
    server = importlib.import_module("liguia.server")
    server.app.dependency_overrides.clear()
    res = TestClient(server.app).get("/api/chat/chats")
    assert res.status_code == 401
    assert res.json()["detail"] == "Token não fornecido"


def test_real_token_is_accepted_by_verify_token() -> None:
    _ensure_backend_on_path()
    auth_helpers = importlib.import_module("liguia.utils.auth_helpers")
    token = auth_helpers.create_token("u1", "loja")
    payload = auth_helpers.jwt.decode(token, auth_helpers.JWT_SECRET, algorithms=["HS256"])
    assert auth_helpers.user_id_from_payload(payload) == "u1"


# ==================== MEDIA ====================

def test_media_resolve_returns_proxy_url(app_client) -> None:
    client, _, _ = app_client
    res = client.get("/api/media/resolve", params={"url": "https://example.com/photo.jpg"})
    assert res.status_code == 200
    data = res.json()
    assert data["success"] is True
    assert data["url"] == "/api/media-proxy?url=https%3A%2F%2Fexample.com%2Fphoto.jpg&type=image"
    assert data["mediaType"] == "image"


def test_media_proxy_streams_bytes_with_detected_type(app_client, monkeypatch) -> None:
    client, _, _ = app_client
    media_routes = importlib.import_module("liguia.routes.media_routes")
    http_mod = importlib.import_module("liguia.whatsapp.http")
    seen = {}

    async def fake_download(url, *, headers=None, timeout_s=30.0):
        seen["headers"] = headers
        return http_mod.DownloadedMedia(content=b"OggS\x00\x02voice", content_type="application/octet-stream", url=url)

    monkeypatch.setattr(media_routes, "download_bytes", fake_download)
    res = client.get("/api/media-proxy", params={"url": "https://mmg.whatsapp.net/v/file", "type": "audio"})
    assert res.status_code == 200
    assert res.content == b"OggS\x00\x02voice"
    assert res.headers["content-type"].startswith("audio/ogg")
    assert res.headers["cache-control"] == "public, max-age=86400"
    assert "apikey" not in seen["headers"]
    assert "Authorization" not in seen["headers"]


def test_media_proxy_upstream_404(app_client, monkeypatch) -> None:
    client, _, _ = app_client
    media_routes = importlib.import_module("liguia.routes.media_routes")
    errors_mod = importlib.import_module("liguia.whatsapp.errors")

    async def fake_download(url, *, headers=None, timeout_s=30.0):
        raise errors_mod.MediaDownloadError("Falha ao recuperar mídia: 404", status_code=404)

    monkeypatch.setattr(media_routes, "download_bytes", fake_download)
    res = client.get("/api/media-proxy", params={"url": "https://mmg.whatsapp.net/v/gone.jpg"})
    assert res.status_code == 404


def test_media_proxy_sends_token_only_to_evolution_host(app_client, monkeypatch) -> None:
    client, _, _ = app_client
    media_routes = importlib.import_module("liguia.routes.media_routes")
    http_mod = importlib.import_module("liguia.whatsapp.http")
    seen = []

    async def fake_download(url, *, headers=None, timeout_s=30.0):
        seen.append(headers)
        return http_mod.DownloadedMedia(content=b"\xff\xd8\xff\xe0jpeg", content_type="image/jpeg", url=url)

    monkeypatch.setattr(media_routes, "download_bytes", fake_download)
    client.get("/api/media-proxy", params={"url": "https://evo.example.com/media/foto.jpg"})
    client.get("/api/media-proxy", params={"url": "https://outro-host.example.net/foto.jpg"})

    evolution_headers, foreign_headers = seen
    assert evolution_headers["apikey"] == "tok"
    assert evolution_headers["Authorization"] == "Bearer tok"
    assert "apikey" not in foreign_headers
    assert "Authorization" not in foreign_headers


def test_cloudinary_upload_after_resolve_still_uploads(app_client) -> None:
    client, container, _ = app_client
    http_mod = importlib.import_module("liguia.whatsapp.http")
    url = "https://mmg.whatsapp.net/photo.jpg"
    downloads = []
    uploads = []

    async def fake_download(media_url, *, headers=None, timeout_s=30.0):
        downloads.append(headers)
        return http_mod.DownloadedMedia(content=b"\xff\xd8\xff\xe0jpeg", content_type="image/jpeg", url=media_url)

    def fake_upload(path, **options):
        uploads.append(options)
        return {"secure_url": "https://res.cloudinary.com/demo/image/upload/whatsapp_media/photo.jpg"}

    container.pipeline._download = fake_download
    container.pipeline._upload = fake_upload
    container.pipeline._configure = lambda: None

    resolved = client.get("/api/media/resolve", params={"url": url}).json()
    assert resolved["url"].startswith("/api/media-proxy?")

    res = client.get("/api/media/cloudinary", params={"url": url})
    assert res.status_code == 200
    assert res.json()["url"] == "https://res.cloudinary.com/demo/image/upload/whatsapp_media/photo.jpg"
    assert len(uploads) == 1
    assert "apikey" not in downloads[0]

    again = client.get("/api/media/resolve", params={"url": url}).json()
    assert again["url"] == resolved["url"]
    assert again["cached"] is True


def test_audio_proxy_prefers_evolution_base64(app_client) -> None:
    client, _, _ = app_client
    by_path = {"/chat/getBase64FromMediaMessage/loja": (201, {"base64": "T2dnUw=="})}
    with _evolution(by_path):
        res = client.get("/api/audio-proxy", params={"message_id": "MSG1", "remote_jid": "55@s.whatsapp.net"})
    assert res.status_code == 200
    assert res.content == b"OggS"
    assert res.headers["content-type"].startswith("audio/ogg")


def test_audio_proxy_requires_url_or_message(app_client) -> None:
    client, _, _ = app_client
    assert client.get("/api/audio-proxy").status_code == 400


# ==================== CHAT ====================

def test_contacts_fix_when_disconnected(app_client) -> None:
    client, _, _ = app_client
    by_path = {"/instance/connectionState/loja": (200, {"instance": {"state": "close"}})}
    with _evolution(by_path):
        res = client.get("/api/chat/contacts-fix")
    data = res.json()
    assert res.status_code == 200
    assert data["success"] is False
    assert "QR code" in data["message"]


def test_contacts_fix_when_connected(app_client) -> None:
    client, _, _ = app_client
    by_path = {
        "/instance/connectionState/loja": (200, {"instance": {"state": "open"}}),
        "/instance/fetchContacts/loja": (200, [{"id": "5511999999999@s.whatsapp.net", "pushName": "Ana"}]),
    }
    with _evolution(by_path):
        res = client.get("/api/chat/contacts-fix")
    data = res.json()
    assert data["success"] is True
    assert data["total"] == 1
    assert data["method"] == "/instance/fetchContacts/loja"


def test_direct_contacts_exhausted_is_503(app_client) -> None:
    client, _, _ = app_client
    with _evolution({}):
        res = client.get("/api/chat/direct-contacts")
    assert res.status_code == 503


def test_direct_contacts_success(app_client) -> None:
    client, _, _ = app_client
    by_path = {"/instance/chats/loja": (200, {"data": [{"id": "5511988887777@s.whatsapp.net"}]})}
    with _evolution(by_path):
        res = client.get("/api/chat/direct-contacts")
    data = res.json()
    assert data["metadata"] == {"total": 1, "source": "/instance/chats/loja"}


def test_chats_without_server_is_404(app_client) -> None:
    client, _, fake = app_client
    fake.has_server = False
    res = client.get("/api/chat/chats")
    assert res.status_code == 404
    assert res.json()["detail"] == "Servidor não configurado para este usuário"


def test_send_text_route(app_client) -> None:
    client, _, _ = app_client
    by_path = {"/message/sendText/loja": (201, {"key": {"id": "ABC"}})}
    with _evolution(by_path):
        res = client.post("/api/chat/send", json={"phone": "11988887777", "message": "Olá"})
    assert res.status_code == 200
    assert res.json()["data"] == {"key": {"id": "ABC"}}


def test_diagnostics_reports_each_operation(app_client) -> None:
    client, _, _ = app_client
    by_path = {
        "/instance/connectionState/loja": (200, {"state": "open"}),
        "/instance/fetchContacts/loja": (200, [{"id": "a"}]),
    }
    with _evolution(by_path):
        res = client.get("/api/diagnostics/contacts")
    diag = res.json()["diagnostics"]
    assert diag["server"]["instanceId"] == "loja"
    assert diag["connection"]["connected"] is True
    assert set(diag["endpoints"]) == {"fetch_contacts", "direct_contacts", "fetch_chats"}
    assert len(diag["endpoints"]["direct_contacts"]) == 9


# ==================== WEBHOOK / CONNECTION ====================

def test_webhook_updates_connection_status(app_client) -> None:
    client, container, _ = app_client
    container.statuses.clear()
    res = client.post(
        "/api/evolution-webhook/loja",
        json={"event": "connection.update", "instance": "loja", "data": {"state": "open"}},
    )
    assert res.status_code == 200
    assert res.json()["status"]["connected"] is True

    status = client.get("/api/connection/status").json()
    assert status["connected"] is True
    assert status["source"] == "evolution-webhook"


def test_webhook_qrcode_event_marks_connecting(app_client) -> None:
    client, container, _ = app_client
    container.statuses.clear()
    res = client.post(
        "/api/evolution-webhook/loja",
        json={"event": "qrcode.updated", "instance": "loja", "data": {"qrcode": {"base64": "data:image/png;base64,QR"}}},
    )
    assert res.status_code == 200
    body = res.json()
    assert body["event"] == "qrcode"
    assert body["status"]["connecting"] is True
    assert body["status"]["qrCode"] == "data:image/png;base64,QR"


def test_webhook_message_media_is_resolved(app_client) -> None:
    client, _, _ = app_client
    payload = {
        "event": "messages.upsert",
        "instance": "loja",
        "data": {
            "key": {"id": "M1", "remoteJid": "5511999999999@s.whatsapp.net", "fromMe": False},
            "message": {"imageMessage": {"url": "https://mmg.whatsapp.net/photo.jpg", "mimetype": "image/jpeg"}},
        },
    }
    res = client.post("/api/evolution-webhook/loja", json=payload)
    media = res.json()["media"]
    assert media["mediaType"] == "image"
    assert media["url"].startswith("/api/media-proxy?url=https%3A%2F%2Fmmg.whatsapp.net")


def test_webhook_unknown_instance_is_404(app_client) -> None:
    client, _, _ = app_client
    res = client.post("/api/evolution-webhook/desconhecida", json={"event": "qrcode.updated", "data": {}})
    assert res.status_code == 404


def test_webhook_invalid_json_is_400(app_client) -> None:
    client, _, _ = app_client
    res = client.post(
        "/api/evolution-webhook/loja",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert res.status_code == 400


def test_connection_qrcode(app_client) -> None:
    client, _, _ = app_client
    by_path = {"/instance/connect/loja": (200, {"base64": "data:image/png;base64,QR", "code": "2@abc"})}
    with _evolution(by_path):
        res = client.get("/api/connection/qrcode")
    assert res.json()["qrCode"] == "data:image/png;base64,QR"


# ==================== META ====================

def test_meta_direct_send_returns_diagnosis_on_graph_error(app_client) -> None:
    client, _, _ = app_client
    meta_mod = importlib.import_module("liguia.whatsapp.meta_api")
    errors_mod = importlib.import_module("liguia.whatsapp.errors")

    async def fake_call(method, url, *, params=None, json=None):
        raise errors_mod.ProviderRequestError(
            "Erro retornado pela Meta API.",
            provider="meta",
            status_code=400,
            details={"body": {"error": {"code": 803, "message": "Invalid business"}}},
        )

    with mock.patch.object(meta_mod.MetaCloudAPI, "_call", side_effect=fake_call):
        res = client.post("/api/meta-direct-send", json={"to": "5511999999999", "templateName": "boas_vindas"})
    assert res.status_code == 400
    data = res.json()
    assert data["success"] is False
    assert data["details"]["code"] == "803"
    assert "ID do negócio" in data["suggestedFix"]


def test_meta_direct_send_success(app_client) -> None:
    client, _, _ = app_client
    meta_mod = importlib.import_module("liguia.whatsapp.meta_api")

    async def fake_call(method, url, *, params=None, json=None):
        return {"messages": [{"id": "wamid.1"}]}

    with mock.patch.object(meta_mod.MetaCloudAPI, "_call", side_effect=fake_call):
        res = client.post("/api/meta-direct-send", json={"to": "5511999999999", "templateName": "boas_vindas"})
    assert res.json()["messageId"] == "wamid.1"


def test_meta_analytics_invalid_range_is_400(app_client) -> None:
    client, _, _ = app_client
    res = client.get("/api/meta-analytics", params={"start": "2024-02-01", "end": "2024-01-01"})
    assert res.status_code == 400


# ==================== SETTINGS ====================

def test_settings_update_repairs_and_masks_token(app_client) -> None:
    client, _, fake = app_client
    writes = []

    def handler(name, ops):
        assert name == "settings"
        upserts = [op for op in ops if op[0] == "upsert"]
        if upserts:
            writes.append(upserts[0][1])
            return _Result([upserts[0][1]])
        return _Result([])

    fake.client = _SupabaseStub(handler)
    res = client.put(
        "/api/settings/meta",
        json={"whatsapp_meta_token": "111222333", "whatsapp_meta_business_id": TOKEN},
    )
    assert res.status_code == 200
    data = res.json()
    assert data["repairs"] == ["token_business_id_swapped", "phone_number_id_from_business_id"]
    assert writes[0]["whatsapp_meta_token"] == TOKEN
    assert writes[0]["whatsapp_meta_business_id"] == "111222333"
    assert data["settings"]["whatsapp_meta_token"] == "EAAx...xxxx"
    assert data["settings"]["configured"] is True


def test_settings_get_flags_swapped_values(app_client) -> None:
    client, _, fake = app_client

    def handler(name, ops):
        return _Result(
            [
                {
                    "whatsapp_meta_token": "111222333",
                    "whatsapp_meta_business_id": TOKEN,
                    "whatsapp_meta_api_version": "v18.0",
                    "whatsapp_meta_phone_number_id": "444555666",
                }
            ]
        )

    fake.client = _SupabaseStub(handler)
    settings = client.get("/api/settings/meta").json()["settings"]
    assert settings["valuesLikelySwapped"] is True
    assert settings["whatsapp_meta_token"] == "1112...2333"


def test_settings_get_without_database_is_503(app_client) -> None:
    client, _, fake = app_client

    def handler(name, ops):
        raise RuntimeError("Supabase não configurado (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY).")

    fake.client = _SupabaseStub(handler)
    res = client.get("/api/settings/meta")
    assert res.status_code == 503


def test_container_uses_cloudinary_mode_from_env(monkeypatch) -> None:
    _ensure_backend_on_path()
    container_mod = importlib.import_module("liguia.whatsapp.container")
    monkeypatch.delenv("LIGUIA_ENDPOINTS_CONFIG_INLINE", raising=False)
    monkeypatch.delenv("LIGUIA_ENDPOINTS_CONFIG", raising=False)
    monkeypatch.setenv("MEDIA_RESOLVER_MODE", "Cloudinary")
    container = container_mod.GatewayContainer.build(credentials=_FakeCredentials())
    assert container.resolver.mode == "cloudinary"
    assert container.registry.list_adapter_ids() == ["evolution"]


class _FakeRequest:
    def __init__(self, body):
        self._body = body

    async def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


@pytest.mark.anyio
async def test_webhook_handler_presence_event_has_no_status(app_client):
    webhooks_routes = importlib.import_module("liguia.routes.webhooks_routes")
    payload = {
        "event": "presence.update",
        "instance": "loja",
        "data": {"presences": [{"id": "5511999999999@s.whatsapp.net", "presence": "composing"}]},
    }
    response = await webhooks_routes.receive_evolution_webhook("loja", _FakeRequest(payload))
    assert response == {"success": True, "event": "presence"}
