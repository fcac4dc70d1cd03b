from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .auth import AuthStrategy, StaticHeadersAuth
from .errors import ConnectionError, MediaDownloadError, ProviderRequestError


@dataclass(frozen=True)
class HttpClientConfig:
    base_url: str
    timeout_s: float = 30.0
    headers: Optional[dict[str, str]] = None


@dataclass(frozen=True)
class HttpResult:
    status_code: int
    payload: Any
    url: str


@dataclass(frozen=True)
class DownloadedMedia:
    content: bytes
    content_type: str
    url: str


class HttpClient:
    def __init__(self, *, config: HttpClientConfig, auth: Optional[AuthStrategy] = None, provider: str):
        self._config = config
        self._auth = auth or StaticHeadersAuth(headers={})
        self._provider = provider

    @property
    def base_url(self) -> str:
        return (self._config.base_url or "").rstrip("/")

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Any] = None,
        timeout_s: Optional[float] = None,
    ) -> HttpResult:
        """Executa a requisição sem interpretar o status HTTP."""
        base = self.base_url
        if not base:
            raise ProviderRequestError("Base URL não configurada.", provider=self._provider, transient=False)
        url = f"{base}{path}"
        base_headers = {"Content-Type": "application/json", **dict(self._config.headers or {})}
        auth_headers = await self._auth.get_headers()
        headers = {**base_headers, **auth_headers}
        method = str(method or "GET").upper()

        try:
            async with httpx.AsyncClient(timeout=timeout_s or self._config.timeout_s) as client:
                if method in {"GET", "DELETE"}:
                    resp = await client.request(method, url, headers=headers)
                else:
                    resp = await client.request(method, url, headers=headers, json=json if json is not None else {})
        except httpx.TimeoutException as e:
            raise ConnectionError(
                "Tempo esgotado na comunicação com provedor.",
                provider=self._provider,
                details={"error": str(e), "url": url},
            )
        except httpx.HTTPError as e:
            raise ConnectionError(
                "Falha de comunicação com provedor.",
                provider=self._provider,
                details={"error": str(e), "url": url},
            )

        return HttpResult(status_code=resp.status_code, payload=_parse_body(resp), url=url)


async def download_bytes(
    url: str,
    *,
    headers: Optional[dict[str, str]] = None,
    timeout_s: float = 30.0,
) -> DownloadedMedia:
    try:
        async with httpx.AsyncClient(timeout=timeout_s, follow_redirects=True, max_redirects=5) as client:
            resp = await client.get(url, headers=headers or {})
    except httpx.TimeoutException as e:
        raise MediaDownloadError("Tempo esgotado ao baixar mídia.", transient=True, details={"error": str(e), "url": url})
    except httpx.HTTPError as e:
        raise MediaDownloadError("Servidor de mídia indisponível.", transient=True, details={"error": str(e), "url": url})

    if resp.status_code != 200:
        raise MediaDownloadError(
            f"Falha ao recuperar mídia: {resp.status_code}",
            status_code=resp.status_code,
            transient=resp.status_code >= 500,
            details={"url": url},
        )

    content_type = (resp.headers.get("content-type") or "").split(";")[0].strip().lower()
    return DownloadedMedia(content=resp.content, content_type=content_type, url=url)


def _parse_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return _safe_text(resp)


def _safe_text(resp: httpx.Response, limit: int = 4000) -> str:
    try:
        return (resp.text or "")[:limit]
    except Exception:
        return ""
