from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from crosslister.schemas.base import BaseSchema


class SyncLogRead(BaseSchema):
    id: int
    entity_type: str
    entity_id: Optional[str] = None
    operation: str
    triggered_by: str
    user_id: Optional[str] = None
    platforms: List[Dict[str, Any]] = Field(default_factory=list)
    changes: Optional[Dict[str, Any]] = None
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration: Optional[int] = None
    errors: List[Dict[str, Any]] = Field(default_factory=list)
