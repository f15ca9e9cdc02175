from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from crosslister.schemas.base import BaseSchema


class NotificationRead(BaseSchema):
    id: int
    created_at: datetime
    type: str
    priority: str
    product_id: Optional[int] = None
    listing_id: Optional[int] = None
    platform: Optional[str] = None
    title: str
    message: str
    action_required: bool
    is_third_party: bool
    third_party_action_type: Optional[str] = None
    performed_by: Optional[str] = None
    performed_at: Optional[datetime] = None
    third_party_details: Optional[Dict[str, Any]] = None
    requires_approval: bool
    approved: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    status: str
    assigned_to: List[str] = Field(default_factory=list)
    meta: Optional[Dict[str, Any]] = Field(default=None, serialization_alias="metadata")
    expires_at: Optional[datetime] = None


class NotificationCounts(BaseModel):
    unread: int
    total: int
    pending_approvals: int


class ApproveRequest(BaseModel):
    approved_by: str
