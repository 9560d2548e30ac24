"""Customer identity for channel users."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Customer(BaseModel):
    """Tenant-scoped customer record linked to a chat channel user."""
    id: str
    tenant_id: str
    channel_user_id: str
    display_name: Optional[str] = None
    created_at: datetime
    following: bool = True
