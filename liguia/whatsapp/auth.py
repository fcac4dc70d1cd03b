from __future__ import annotations

from dataclasses import dataclass

from .errors import AuthError


class AuthStrategy:
    async def get_headers(self) -> dict[str, str]:
        raise NotImplementedError


@dataclass(frozen=True)
class StaticHeadersAuth(AuthStrategy):
    headers: dict[str, str]

    async def get_headers(self) -> dict[str, str]:
        return dict(self.headers)


@dataclass(frozen=True)
class BearerTokenAuth(AuthStrategy):
    token: str

    async def get_headers(self) -> dict[str, str]:
        if not self.token:
            raise AuthError("Token ausente.", transient=False)
        return {"Authorization": f"Bearer {self.token}"}


@dataclass(frozen=True)
class EvolutionTokenAuth(AuthStrategy):
    """Servidores Evolution divergem no nome do header; os dois são enviados."""

    api_key: str

    async def get_headers(self) -> dict[str, str]:
        if not self.api_key:
            raise AuthError("Token da Evolution API ausente.", transient=False)
        return {"apikey": self.api_key, "Authorization": f"Bearer {self.api_key}"}
