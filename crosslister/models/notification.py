# crosslister/models/notification.py
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.ext.mutable import MutableList

from crosslister.database import Base, json_type
from crosslister.core.enums import NotificationPriority, NotificationStatus


class Notification(Base):
    """Operator-facing event: sales, sync errors and changes made directly on a marketplace."""
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_approval", "requires_approval", "approved"),
    )

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    type = Column(String(32), nullable=False, index=True)
    priority = Column(String(16), nullable=False, default=NotificationPriority.MEDIUM.value, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), index=True)
    platform = Column(String(32), index=True)  # platform value or 'system'

    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    action_required = Column(Boolean, default=False, nullable=False)
    action_url = Column(String)

    # Third-party action (change made directly on the marketplace)
    is_third_party = Column(Boolean, default=False, nullable=False)
    third_party_action_type = Column(String(32))
    performed_by = Column(String)
    performed_at = Column(DateTime(timezone=True))
    third_party_details = Column(json_type())
    requires_approval = Column(Boolean, default=False, nullable=False)
    approved = Column(Boolean, default=False, nullable=False)
    approved_by = Column(String)
    approved_at = Column(DateTime(timezone=True))

    status = Column(String(16), nullable=False, default=NotificationStatus.UNREAD.value, index=True)
    read_at = Column(DateTime(timezone=True))
    archived_at = Column(DateTime(timezone=True))
    actioned_at = Column(DateTime(timezone=True))

    assigned_to = Column(MutableList.as_mutable(json_type()), default=list)
    meta = Column("metadata", json_type())

    expires_at = Column(DateTime(timezone=True), index=True)

    @property
    def is_pending_approval(self) -> bool:
        return self.is_third_party and self.requires_approval and not self.approved

    def __repr__(self):
        return f"<Notification(id={self.id}, type='{self.type}', status='{self.status}')>"
