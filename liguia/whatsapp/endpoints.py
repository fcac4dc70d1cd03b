from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from .auth import EvolutionTokenAuth
from .errors import AuthError, ConnectionError, EndpointsExhaustedError
from .http import HttpClient, HttpClientConfig
from .observability import LogContext, Observability
from .providers.base import ApiAdapter, EndpointTemplate
from .providers.registry import AdapterRegistry

Acceptor = Callable[[Any], bool]


class ProbeCredentials(Protocol):
    api_url: str
    api_token: str
    instance_id: str


@dataclass(frozen=True)
class ProbeResult:
    endpoint: str
    method: str
    status_code: int
    payload: Any
    attempts: list[dict[str, Any]] = field(default_factory=list)


def has_content(payload: Any) -> bool:
    if payload is None:
        return False
    if isinstance(payload, (str, bytes)):
        return bool(payload.strip())
    if isinstance(payload, (list, dict)):
        return len(payload) > 0
    return True


class EndpointProber:
    """Tenta os endpoints de uma operação em ordem e para no primeiro que responde.

    Não há backoff nem circuit breaker: a lista é curta e o custo de uma
    tentativa falha é só o timeout da operação.
    """

    def __init__(
        self,
        *,
        registry: AdapterRegistry,
        obs: Observability,
        adapter_id: str = "evolution",
        client_factory: Optional[Callable[[ProbeCredentials, str], HttpClient]] = None,
    ):
        self._registry = registry
        self._obs = obs
        self._adapter_id = adapter_id
        self._client_factory = client_factory or _default_client

    @property
    def adapter(self) -> ApiAdapter:
        return self._registry.get(self._adapter_id)

    def templates(self, operation: str) -> tuple[EndpointTemplate, ...]:
        return self.adapter.operation(operation).templates

    async def probe(
        self,
        operation: str,
        creds: ProbeCredentials,
        *,
        body: Optional[Any] = None,
        accept: Optional[Acceptor] = None,
        ctx: Optional[LogContext] = None,
    ) -> ProbeResult:
        spec = self.adapter.operation(operation)
        client = self._client_factory(creds, self._adapter_id)
        check = accept or has_content
        log_ctx = (ctx or LogContext()).with_instance(creds.instance_id)
        attempts: list[dict[str, Any]] = []

        for tpl in spec.templates:
            path = tpl.render(creds.instance_id)
            payload = body if body is not None else tpl.body
            try:
                result = await client.send(tpl.method, path, json=payload, timeout_s=spec.timeout_s)
            except ConnectionError as e:
                attempts.append({"endpoint": path, "method": tpl.method, "status": None, "error": e.message})
                self._obs.warning("prober.attempt.unreachable", ctx=log_ctx, operation=operation, endpoint=path)
                continue

            attempt = {"endpoint": path, "method": tpl.method, "status": result.status_code}
            status_ok = result.status_code in spec.ok_statuses
            if status_ok and check(result.payload):
                attempts.append({**attempt, "ok": True})
                self._obs.info(
                    "prober.success",
                    ctx=log_ctx,
                    operation=operation,
                    endpoint=path,
                    tried=len(attempts),
                )
                return ProbeResult(
                    endpoint=path,
                    method=tpl.method,
                    status_code=result.status_code,
                    payload=result.payload,
                    attempts=attempts,
                )

            attempt["ok"] = False
            if status_ok:
                attempt["error"] = "resposta vazia ou inesperada"
            attempts.append(attempt)
            self._obs.debug(
                "prober.attempt.failed",
                ctx=log_ctx,
                operation=operation,
                endpoint=path,
                status=result.status_code,
            )

        self._obs.warning("prober.exhausted", ctx=log_ctx, operation=operation, tried=len(attempts))
        if attempts and all(a.get("status") == 401 for a in attempts):
            raise AuthError(
                "Falha de autenticação na Evolution API. Verifique o token.",
                details={"operation": operation, "attempts": attempts},
            )
        raise EndpointsExhaustedError(operation, attempts=attempts)

    async def probe_all(
        self,
        operation: str,
        creds: ProbeCredentials,
        *,
        body: Optional[Any] = None,
        ctx: Optional[LogContext] = None,
    ) -> list[dict[str, Any]]:
        """Chama todos os endpoints da operação, sem parar no primeiro sucesso."""
        spec = self.adapter.operation(operation)
        client = self._client_factory(creds, self._adapter_id)
        log_ctx = (ctx or LogContext()).with_instance(creds.instance_id)
        results: list[dict[str, Any]] = []

        for tpl in spec.templates:
            path = tpl.render(creds.instance_id)
            payload = body if body is not None else tpl.body
            try:
                result = await client.send(tpl.method, path, json=payload, timeout_s=spec.timeout_s)
            except ConnectionError as e:
                results.append({"endpoint": path, "method": tpl.method, "status": None, "ok": False, "error": e.message})
                continue
            results.append(
                {
                    "endpoint": path,
                    "method": tpl.method,
                    "status": result.status_code,
                    "ok": result.status_code in spec.ok_statuses,
                    "dataType": _describe(result.payload),
                    "count": len(result.payload) if isinstance(result.payload, (list, dict)) else None,
                }
            )

        self._obs.info(
            "prober.probe_all",
            ctx=log_ctx,
            operation=operation,
            ok=sum(1 for r in results if r.get("ok")),
            total=len(results),
        )
        return results


def _default_client(creds: ProbeCredentials, provider: str) -> HttpClient:
    return HttpClient(
        config=HttpClientConfig(base_url=creds.api_url),
        auth=EvolutionTokenAuth(api_key=creds.api_token),
        provider=provider,
    )


def _describe(payload: Any) -> str:
    if payload is None:
        return "empty"
    if isinstance(payload, list):
        return "array"
    if isinstance(payload, dict):
        return "object"
    return type(payload).__name__
