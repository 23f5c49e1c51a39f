from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.pg_database import Base


class ProductTracking(Base):
    __tablename__ = "product_tracking"
    __table_args__ = (UniqueConstraint("config_id", "sku_key", name="uq_product_tracking_config_sku"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    config_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sync_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[str] = mapped_column(String(255), nullable=False)
    sku_key: Mapped[str] = mapped_column(String(255), nullable=False)  # normalized sku
    remote_entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remote_variant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    feed_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
