"""
WhatsApp channel configuration model
"""
from typing import Optional
from datetime import datetime
from pydantic import BaseModel


class ChannelConfig(BaseModel):
    """Credentials for one WhatsApp Business phone number"""

    model_config = {"extra": "allow"}

    id: str
    name: Optional[str] = None
    phone_number_id: str
    phone_number: Optional[str] = None
    access_token: str
    verify_token: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
