from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, text

from stockflow.database.base import Base


class SyncRun(Base):
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True)
    sync_type = Column(String(20), nullable=False)
    strategy = Column(String(20))
    status = Column(String(20), nullable=False, default="running")
    dry_run = Column(Boolean, nullable=False, default=False)

    started_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    finished_at = Column(DateTime(timezone=True))
    last_checkpoint_at = Column(DateTime(timezone=True))
    duration_ms = Column(Integer)

    items_processed = Column(Integer, nullable=False, default=0)
    items_updated = Column(Integer, nullable=False, default=0)
    items_new = Column(Integer, nullable=False, default=0)
    items_skipped = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
    pages_fetched = Column(Integer, nullable=False, default=0)

    errors = Column(JSON, nullable=False, default=list)
    error_message = Column(String)

    __table_args__ = (
        # At most one running row; the database enforces single-flight across processes.
        Index(
            "uq_sync_runs_single_running",
            "status",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
        Index("idx_sync_runs_started", "started_at"),
    )


__all__ = ["SyncRun"]
