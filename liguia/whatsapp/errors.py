from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class WhatsAppError(Exception):
    message: str
    code: str = "whatsapp_error"
    transient: bool = False
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


class ConfigError(WhatsAppError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="config_error", transient=False, details=details)


class AdapterNotFoundError(WhatsAppError):
    def __init__(self, adapter_id: str):
        super().__init__(
            message=f"Adaptador de API não encontrado: {adapter_id}",
            code="adapter_not_found",
            transient=False,
            details={"adapter": adapter_id},
        )


class AuthError(WhatsAppError):
    def __init__(self, message: str, *, transient: bool = False, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="auth_error", transient=transient, details=details)


class ProviderRequestError(WhatsAppError):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: Optional[int] = None,
        transient: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        merged_details: dict[str, Any] = {"provider": provider}
        if status_code is not None:
            merged_details["status_code"] = status_code
        if details:
            merged_details.update(details)
        self.status_code = status_code
        super().__init__(message=message, code="provider_request_error", transient=transient, details=merged_details)


class ConnectionError(WhatsAppError):
    def __init__(self, message: str, *, provider: str, transient: bool = True, details: Optional[dict[str, Any]] = None):
        merged_details: dict[str, Any] = {"provider": provider}
        if details:
            merged_details.update(details)
        super().__init__(message=message, code="connection_error", transient=transient, details=merged_details)


class EndpointsExhaustedError(WhatsAppError):
    def __init__(self, operation: str, *, attempts: list[dict[str, Any]]):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            message=f"Nenhum endpoint respondeu para a operação {operation}.",
            code="endpoints_exhausted",
            transient=True,
            details={"operation": operation, "attempts": attempts},
        )


class CredentialsNotFoundError(WhatsAppError):
    def __init__(self, message: str = "Servidor não configurado para este usuário", *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="credentials_not_found", transient=False, details=details)


class IncompleteCredentialsError(WhatsAppError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="credentials_incomplete", transient=False, details=details)


class MediaDownloadError(WhatsAppError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, transient: bool = False, details: Optional[dict[str, Any]] = None):
        merged_details: dict[str, Any] = {}
        if status_code is not None:
            merged_details["status_code"] = status_code
        if details:
            merged_details.update(details)
        self.status_code = status_code
        super().__init__(message=message, code="media_download_error", transient=transient, details=merged_details)


class MediaUploadError(WhatsAppError):
    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None):
        super().__init__(message=message, code="media_upload_error", transient=False, details=details)
