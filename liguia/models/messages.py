"""Modelos de envio de mensagens (Evolution e Meta Cloud API)."""
from pydantic import BaseModel, Field
from typing import List, Optional


# ==================== EVOLUTION ====================

class SendTextRequest(BaseModel):
    phone: str = Field(..., min_length=8)
    message: str = Field(..., min_length=1)


# ==================== META ====================

class MetaDirectSendRequest(BaseModel):
    to: str = Field(..., min_length=8)
    templateName: str = Field(..., min_length=1)
    language: str = "pt_BR"
    components: Optional[List[dict]] = None
