from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from ..errors import ConfigError

_ALLOWED_METHODS = {"GET", "POST", "PUT", "DELETE"}


@dataclass(frozen=True)
class EndpointTemplate:
    method: str
    path: str
    body: Optional[dict[str, Any]] = None

    def render(self, instance: str) -> str:
        return self.path.replace("{instance}", str(instance or ""))

    @staticmethod
    def from_raw(raw: Any) -> "EndpointTemplate":
        """Aceita "GET /x/{instance}", "/x/{instance}" ou um mapa com method/path/body."""
        if isinstance(raw, EndpointTemplate):
            return raw
        if isinstance(raw, str):
            text = raw.strip()
            method, _, path = text.partition(" ")
            if not path:
                method, path = "GET", text
            return EndpointTemplate.build(method, path)
        if isinstance(raw, Mapping):
            body = raw.get("body")
            return EndpointTemplate.build(
                str(raw.get("method") or "GET"),
                str(raw.get("path") or ""),
                body=dict(body) if isinstance(body, Mapping) else None,
            )
        raise ConfigError("Template de endpoint inválido.", details={"value": repr(raw)})

    @staticmethod
    def build(method: str, path: str, *, body: Optional[dict[str, Any]] = None) -> "EndpointTemplate":
        m = str(method or "GET").strip().upper()
        p = str(path or "").strip()
        if m not in _ALLOWED_METHODS:
            raise ConfigError("Método HTTP inválido em template.", details={"method": m, "path": p})
        if not p.startswith("/"):
            raise ConfigError("Path de template deve começar com '/'.", details={"path": p})
        return EndpointTemplate(method=m, path=p, body=body)


@dataclass(frozen=True)
class OperationSpec:
    name: str
    templates: tuple[EndpointTemplate, ...]
    timeout_s: float = 10.0
    ok_statuses: tuple[int, ...] = (200,)


@dataclass(frozen=True)
class ApiAdapter:
    adapter_id: str
    version: str
    operations: Mapping[str, OperationSpec] = field(default_factory=dict)

    def operation(self, name: str) -> OperationSpec:
        op = self.operations.get(name)
        if op is None:
            raise ConfigError(
                "Operação não suportada pelo adaptador.",
                details={"adapter": self.adapter_id, "operation": name},
            )
        return op

    def with_operation(self, spec: OperationSpec) -> "ApiAdapter":
        ops = dict(self.operations)
        ops[spec.name] = spec
        return replace(self, operations=ops)


def operation(
    name: str,
    timeout_s: float,
    *templates: str,
    body: Optional[dict[str, Any]] = None,
    ok_statuses: tuple[int, ...] = (200,),
) -> OperationSpec:
    """Atalho para declarar operações: operation("x", 10, "GET /a/{instance}", "POST /b/{instance}")."""
    built = []
    for raw in templates:
        tpl = EndpointTemplate.from_raw(raw)
        if body is not None and tpl.method != "GET":
            tpl = replace(tpl, body=dict(body))
        built.append(tpl)
    return OperationSpec(name=name, templates=tuple(built), timeout_s=timeout_s, ok_statuses=ok_statuses)
