from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class LogContext:
    user_id: Optional[str] = None
    server_id: Optional[str] = None
    instance_name: Optional[str] = None
    correlation_id: Optional[str] = None

    def with_instance(self, instance_name: Optional[str]) -> "LogContext":
        return replace(self, instance_name=instance_name)


class Observability:
    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def debug(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.debug(self._format(event, ctx=ctx, fields=fields))

    def info(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.info(self._format(event, ctx=ctx, fields=fields))

    def warning(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.warning(self._format(event, ctx=ctx, fields=fields))

    def error(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.error(self._format(event, ctx=ctx, fields=fields))

    def exception(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.exception(self._format(event, ctx=ctx, fields=fields))

    def _format(self, event: str, *, ctx: Optional[LogContext], fields: Mapping[str, Any]) -> str:
        parts: list[str] = [event]
        if ctx:
            if ctx.user_id:
                parts.append(f"user={ctx.user_id}")
            if ctx.server_id:
                parts.append(f"server={ctx.server_id}")
            if ctx.instance_name:
                parts.append(f"instance={ctx.instance_name}")
            if ctx.correlation_id:
                parts.append(f"corr={ctx.correlation_id}")
        for k, v in fields.items():
            if v is None:
                continue
            parts.append(f"{k}={_shorten(v)}")
        return " ".join(parts)


def _shorten(value: Any, limit: int = 120) -> str:
    text = str(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
