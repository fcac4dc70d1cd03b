"""Modelos Pydantic do backend.

Este módulo re-exporta todos os modelos para facilitar importações.
"""
from .messages import (
    MetaDirectSendRequest,
    SendTextRequest,
)
from .settings import MetaSettingsUpdate

__all__ = [
    "MetaDirectSendRequest",
    "SendTextRequest",
    "MetaSettingsUpdate",
]
