from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Optional, Union

import httpx

from .auth import BearerTokenAuth
from .credentials import MetaCredentials
from .errors import ConnectionError, IncompleteCredentialsError, ProviderRequestError
from .observability import LogContext, Observability

GRAPH_BASE_URL = "https://graph.facebook.com"
TEMPLATES_PAGE_LIMIT = 250
MAX_TEMPLATE_PAGES = 40

_SUGGESTIONS = {
    "803": "ID do negócio inválido. Verifique o ID correto no Meta Business Suite.",
    "130429": "Limite de requisições atingido. Aguarde alguns minutos e tente novamente.",
}


def _is_numeric(value: str) -> bool:
    return bool(value) and value.isdigit()


def validate_for_templates(creds: MetaCredentials) -> None:
    if not creds.token or len(creds.token) < 50:
        raise IncompleteCredentialsError(
            "Token da Meta API inválido ou muito curto. Use o token permanente do WhatsApp Business.",
            details={"tokenLength": len(creds.token or "")},
        )
    if not _is_numeric(creds.business_id):
        raise IncompleteCredentialsError(
            "ID do negócio deve ser numérico. Verifique a configuração.",
            details={"businessId": creds.business_id},
        )


def diagnose_meta_error(status: Optional[int], body: Any, creds: MetaCredentials) -> dict[str, Any]:
    """Traduz o erro da Graph API em uma sugestão de correção para o operador."""
    error = body.get("error") if isinstance(body, dict) else None
    error = error if isinstance(error, dict) else {}
    code = str(error.get("code") or status or "")
    message = error.get("message") or "Erro na API"
    suggested_fix = ""
    swapped = False

    if code == "190":
        if len(creds.token or "") < 50:
            suggested_fix = "O token da API parece muito curto. Verifique se você está usando o 'Permanent Access Token' da Meta API."
            swapped = True
        else:
            suggested_fix = "Token de acesso inválido ou expirado. Gere um novo token na Meta Business Platform."
    elif code == "100":
        if len(creds.business_id or "") > 50:
            suggested_fix = "O ID do negócio parece ser na verdade um token. Os campos podem estar invertidos nas configurações."
            swapped = True
        elif not _is_numeric(creds.business_id or ""):
            suggested_fix = "O ID do negócio deve ser um valor numérico. Verifique a configuração."
    else:
        suggested_fix = _SUGGESTIONS.get(code, "")

    token = creds.token or ""
    return {
        "status": status,
        "message": message,
        "code": code,
        "type": error.get("type"),
        "suggestedFix": suggested_fix,
        "valuesLikelySwapped": swapped,
        "tokenLength": len(token),
        "businessIdLength": len(creds.business_id or ""),
        "apiVersion": creds.api_version,
        "phoneNumberId": creds.phone_number_id,
        "tokenFormat": f"{token[:3]}...",
    }


def _epoch(value: Union[str, date, datetime, int, float]) -> int:
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    if isinstance(value, date):
        return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp())
    return _epoch(date.fromisoformat(str(value)[:10]))


class MetaCloudAPI:
    def __init__(
        self,
        creds: MetaCredentials,
        *,
        obs: Optional[Observability] = None,
        base_url: str = GRAPH_BASE_URL,
        timeout_s: float = 30.0,
    ):
        self.creds = creds
        self._auth = BearerTokenAuth(token=creds.token)
        self._obs = obs
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s

    def _url(self, *parts: str) -> str:
        return "/".join([self._base_url, self.creds.api_version, *parts])

    def _log(self, event: str, **fields: Any) -> None:
        if self._obs:
            self._obs.info(event, ctx=LogContext(user_id=self.creds.user_id), **fields)

    async def _call(self, method: str, url: str, *, params: Optional[dict] = None, json: Any = None) -> Any:
        headers = {**(await self._auth.get_headers()), "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                resp = await client.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as e:
            raise ConnectionError(
                "Não foi possível conectar ao servidor da Meta.",
                provider="meta",
                details={"error": str(e), "url": url},
            )
        try:
            payload = resp.json() if resp.content else None
        except ValueError:
            payload = resp.text[:4000]
        if resp.status_code >= 400:
            raise ProviderRequestError(
                "Erro retornado pela Meta API.",
                provider="meta",
                status_code=resp.status_code,
                transient=resp.status_code >= 500,
                details={"body": payload},
            )
        return payload

    async def send_template(
        self,
        to: str,
        template_name: str,
        language: str = "pt_BR",
        components: Optional[list] = None,
    ) -> dict[str, Any]:
        recipient = to[1:] if to.startswith("+") else to
        template: dict[str, Any] = {"name": template_name, "language": {"code": language}}
        if components:
            template["components"] = components
        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "template",
            "template": template,
        }
        payload = await self._call("POST", self._url(self.creds.phone_number_id, "messages"), json=body)
        messages = payload.get("messages") if isinstance(payload, dict) else None
        message_id = messages[0].get("id") if isinstance(messages, list) and messages and isinstance(messages[0], dict) else None
        self._log("meta.template.sent", template=template_name, message_id=message_id)
        return {"messageId": message_id, "response": payload}

    async def list_templates(self, approved_only: bool = True) -> list[dict[str, Any]]:
        validate_for_templates(self.creds)
        url: Optional[str] = self._url(self.creds.business_id, "message_templates")
        params: Optional[dict] = {"limit": TEMPLATES_PAGE_LIMIT}
        templates: list[dict[str, Any]] = []

        for _ in range(MAX_TEMPLATE_PAGES):
            if not url:
                break
            payload = await self._call("GET", url, params=params)
            page = payload.get("data") if isinstance(payload, dict) else None
            if not isinstance(page, list):
                break
            for t in page:
                if not isinstance(t, dict):
                    continue
                templates.append(
                    {
                        "id": t.get("id"),
                        "name": t.get("name"),
                        "status": t.get("status"),
                        "category": t.get("category"),
                        "components": t.get("components"),
                        "language": t.get("language"),
                    }
                )
            paging = payload.get("paging") if isinstance(payload.get("paging"), dict) else {}
            # A URL de `next` já carrega limit e cursor.
            url, params = paging.get("next"), None

        self._log("meta.templates.listed", total=len(templates))
        if approved_only:
            return [t for t in templates if t.get("status") == "APPROVED"]
        return templates

    async def fetch_analytics(
        self,
        start: Union[str, date, datetime, int],
        end: Union[str, date, datetime, int],
        granularity: str = "DAY",
    ) -> dict[str, Any]:
        start_ts, end_ts = _epoch(start), _epoch(end)
        if end_ts < start_ts:
            raise ValueError("Período inválido: data final antes da inicial.")
        fields = f"analytics.start({start_ts}).end({end_ts}).granularity({granularity.upper()})"
        payload = await self._call("GET", self._url(self.creds.business_id), params={"fields": fields})
        analytics = payload.get("analytics") if isinstance(payload, dict) else None
        points = analytics.get("data_points") if isinstance(analytics, dict) else None
        return {
            "start": start_ts,
            "end": end_ts,
            "granularity": granularity.upper(),
            "dataPoints": points if isinstance(points, list) else [],
            "raw": payload,
        }
