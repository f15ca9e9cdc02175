# crosslister/models/sync_log.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.ext.mutable import MutableList

from crosslister.database import Base, json_type
from crosslister.core.enums import SyncLogStatus


class SyncLogEntry(Base):
    """
    Audit record of one synchronization operation, possibly spanning several platforms.

    An entry left in ``pending`` was never completed, which means the
    operation crashed part way through.
    """
    __tablename__ = "sync_log_entries"

    id = Column(Integer, primary_key=True)

    entity_type = Column(String(32), nullable=False, index=True)  # 'product', 'listing', 'platform'
    entity_id = Column(String(64), index=True)
    operation = Column(String(16), nullable=False, index=True)
    triggered_by = Column(String(16), nullable=False, default="user", index=True)
    user_id = Column(String(64), index=True)

    # [{platform, status, platform_listing_id, error, response}]
    platforms = Column(MutableList.as_mutable(json_type()), default=list)
    # {"before": ..., "after": ...}
    changes = Column(json_type())

    status = Column(String(16), nullable=False, default=SyncLogStatus.PENDING.value, index=True)

    started_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True))
    duration = Column(Integer)  # milliseconds

    # [{platform, code, message, details}]
    errors = Column(MutableList.as_mutable(json_type()), default=list)
    meta = Column("metadata", json_type())

    def __repr__(self):
        return (f"<SyncLogEntry(id={self.id}, op='{self.operation}', entity={self.entity_type}:{self.entity_id}, "
                f"status='{self.status}')>")
