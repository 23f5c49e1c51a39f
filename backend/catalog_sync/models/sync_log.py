from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, func

from catalog_sync.pg_database import Base

# Run finished, possibly with item failures
SUCCESS_STATUSES = ("completed", "completed_with_errors")
TERMINAL_STATUSES = SUCCESS_STATUSES + ("failed",)


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_id = Column(Integer, ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=True, index=True)
    # started | processing | bulk_operation_started | cleaning_duplicates | completed | completed_with_errors | failed
    status = Column(String(32), nullable=False, default="started")
    start_time = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=True)
    message = Column(Text, nullable=True)
    items_processed = Column(Integer, nullable=False, default=0)
    items_succeeded = Column(Integer, nullable=False, default=0)
    items_failed = Column(Integer, nullable=False, default=0)
