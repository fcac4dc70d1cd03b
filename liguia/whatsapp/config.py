from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from typing import Protocol

    class YAMLValidationError(Exception):
        pass

    class _YamlDoc(Protocol):
        data: Any

    def load_yaml(_text: str) -> _YamlDoc:
        raise NotImplementedError
else:
    from strictyaml import YAMLValidationError, load as load_yaml

from .errors import ConfigError
from .providers.base import EndpointTemplate, OperationSpec
from .providers.registry import PluginSpec


@dataclass(frozen=True)
class OperationOverride:
    adapter_id: str
    operation: str
    templates: tuple[EndpointTemplate, ...]
    timeout_s: Optional[float] = None


@dataclass(frozen=True)
class EndpointsConfig:
    plugins: list[PluginSpec] = field(default_factory=list)
    overrides: list[OperationOverride] = field(default_factory=list)
    default_adapter: str = "evolution"

    def apply_to(self, registry: Any) -> None:
        if self.plugins:
            registry.load_plugins(self.plugins)
        for ov in self.overrides:
            current = registry.get(ov.adapter_id)
            existing = current.operations.get(ov.operation)
            timeout = ov.timeout_s
            if timeout is None:
                timeout = existing.timeout_s if existing else 10.0
            registry.override_operation(
                ov.adapter_id,
                OperationSpec(
                    name=ov.operation,
                    templates=ov.templates,
                    timeout_s=timeout,
                    ok_statuses=existing.ok_statuses if existing else (200,),
                ),
            )


def load_endpoints_config() -> EndpointsConfig:
    inline = (os.getenv("LIGUIA_ENDPOINTS_CONFIG_INLINE") or "").strip()
    path = (os.getenv("LIGUIA_ENDPOINTS_CONFIG") or "").strip()

    if inline:
        data = _parse_text(inline)
    elif path:
        data = _parse_file(path)
    else:
        data = {}

    default_adapter = str(data.get("adapter") or data.get("default_adapter") or "evolution").strip().lower()
    return EndpointsConfig(
        plugins=_parse_plugins(data),
        overrides=_parse_overrides(data, default_adapter),
        default_adapter=default_adapter,
    )


def _parse_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except Exception as e:
        raise ConfigError("Falha ao ler arquivo de configuração.", details={"path": path, "error": str(e)})
    return _parse_text(text, source=path)


def _parse_text(text: str, source: str = "inline") -> dict[str, Any]:
    raw = (text or "").lstrip()
    if not raw:
        return {}
    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except Exception as e:
            raise ConfigError("JSON inválido em configuração.", details={"source": source, "error": str(e)})
    else:
        try:
            data = load_yaml(raw).data
        except YAMLValidationError as e:
            raise ConfigError("YAML inválido em configuração.", details={"source": source, "error": str(e)})
    if not isinstance(data, dict):
        raise ConfigError("Configuração de endpoints deve ser um mapa.", details={"source": source})
    return data


def _parse_plugins(data: dict[str, Any]) -> list[PluginSpec]:
    raw_plugins = data.get("plugins") or []
    if isinstance(raw_plugins, dict):
        raw_plugins = [{"adapter_id": k, **(v or {})} for k, v in raw_plugins.items()]
    if not isinstance(raw_plugins, list):
        raise ConfigError("Campo plugins deve ser lista ou mapa.", details={"type": str(type(raw_plugins))})

    specs: list[PluginSpec] = []
    for item in raw_plugins:
        if not isinstance(item, dict):
            continue
        adapter_id = str(item.get("adapter_id") or item.get("id") or "").strip()
        import_path = str(item.get("import_path") or item.get("adapter") or "").strip()
        if adapter_id and import_path:
            specs.append(PluginSpec(adapter_id=adapter_id, import_path=import_path))
    return specs


def _parse_overrides(data: dict[str, Any], default_adapter: str) -> list[OperationOverride]:
    """Lê o bloco `operations`.

    Formato aceito (YAML ou JSON)::

        operations:
          fetch_contacts:
            timeout_s: 8
            endpoints:
              - GET /instance/fetchContacts/{instance}
              - method: POST
                path: /chat/findContacts/{instance}

    Uma lista direta no lugar do mapa também vale como `endpoints`.
    """
    raw_ops = data.get("operations") or {}
    if not isinstance(raw_ops, dict):
        raise ConfigError("Campo operations deve ser um mapa.", details={"type": str(type(raw_ops))})

    out: list[OperationOverride] = []
    for name, body in raw_ops.items():
        op_name = str(name or "").strip()
        if not op_name:
            continue
        if isinstance(body, list):
            body = {"endpoints": body}
        if not isinstance(body, dict):
            raise ConfigError("Operação mal formada em configuração.", details={"operation": op_name})
        endpoints = body.get("endpoints") or []
        if not isinstance(endpoints, list) or not endpoints:
            raise ConfigError("Operação sem endpoints em configuração.", details={"operation": op_name})
        timeout_raw = body.get("timeout_s")
        try:
            timeout_s = float(timeout_raw) if timeout_raw not in (None, "") else None
        except (TypeError, ValueError):
            raise ConfigError("timeout_s inválido.", details={"operation": op_name, "value": str(timeout_raw)})
        out.append(
            OperationOverride(
                adapter_id=str(body.get("adapter") or default_adapter).strip().lower(),
                operation=op_name,
                templates=tuple(EndpointTemplate.from_raw(e) for e in endpoints),
                timeout_s=timeout_s,
            )
        )
    return out
