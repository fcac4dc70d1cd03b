from __future__ import annotations

import importlib
from dataclasses import dataclass

from ..errors import AdapterNotFoundError, ConfigError
from .base import ApiAdapter, OperationSpec


@dataclass(frozen=True)
class PluginSpec:
    adapter_id: str
    import_path: str


class AdapterRegistry:
    def __init__(self) -> None:
        self._adapters: dict[str, ApiAdapter] = {}

    def register(self, adapter: ApiAdapter) -> None:
        aid = (adapter.adapter_id or "").strip().lower()
        if not aid:
            raise ConfigError("adapter_id inválido em adaptador.")
        self._adapters[aid] = adapter

    def get(self, adapter_id: str) -> ApiAdapter:
        aid = str(adapter_id or "").strip().lower()
        if aid in self._adapters:
            return self._adapters[aid]
        raise AdapterNotFoundError(aid)

    def list_adapter_ids(self) -> list[str]:
        return sorted(self._adapters.keys())

    def override_operation(self, adapter_id: str, spec: OperationSpec) -> None:
        self.register(self.get(adapter_id).with_operation(spec))

    def load_plugins(self, specs: list[PluginSpec]) -> None:
        for spec in specs:
            adapter = _import_adapter(spec.import_path)
            if not isinstance(adapter, ApiAdapter):
                raise ConfigError("Plugin não retornou um ApiAdapter.", details={"path": spec.import_path})
            declared = adapter.adapter_id.strip().lower()
            if declared and declared != spec.adapter_id.strip().lower():
                raise ConfigError(
                    "Plugin adapter_id diverge da configuração.",
                    details={"config": spec.adapter_id, "adapter": declared, "path": spec.import_path},
                )
            self.register(adapter)


def _import_adapter(path: str) -> ApiAdapter:
    raw = (path or "").strip()
    if ":" not in raw:
        raise ConfigError("Plugin import_path inválido (use modulo:objeto).", details={"import_path": raw})
    module_name, attr = raw.split(":", 1)
    try:
        module = importlib.import_module(module_name)
    except Exception as e:
        raise ConfigError("Falha ao importar módulo do plugin.", details={"module": module_name, "error": str(e)})
    if not hasattr(module, attr):
        raise ConfigError("Atributo do plugin não encontrado.", details={"module": module_name, "attr": attr})
    obj = getattr(module, attr)
    if callable(obj) and not isinstance(obj, ApiAdapter):
        return obj()
    return obj
