"""Configurações da Meta Cloud API por usuário."""
from pydantic import BaseModel
from typing import Optional


class MetaSettingsUpdate(BaseModel):
    whatsapp_meta_token: Optional[str] = None
    whatsapp_meta_business_id: Optional[str] = None
    whatsapp_meta_api_version: Optional[str] = None
    whatsapp_meta_phone_number_id: Optional[str] = None
