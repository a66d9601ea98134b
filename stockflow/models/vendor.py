from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String

from stockflow.database.base import Base


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(120), primary_key=True)
    name = Column(String, nullable=False)
    contact_name = Column(String)
    contact_email = Column(String)
    phone = Column(String)
    lead_time_days = Column(Integer)
    active = Column(Boolean, nullable=False, default=True)

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_vendors_name", "name"),
    )


__all__ = ["Vendor"]
