import uuid

from database import Base
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)


class AlertSnapshotMixin:
    """
    Point-in-time copy of the rack identity taken when the alert opens.
    Kept denormalized so the record stays readable if the rack metadata changes.
    """

    pdu_id = Column(String(255), nullable=False)
    rack_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255))
    country = Column(String(100))
    site = Column(String(255), index=True)
    dc = Column(String(100))
    phase = Column(String(50))
    chain = Column(String(100))
    node = Column(String(100))
    serial = Column(String(255))
    gw_name = Column(String(255))
    gw_ip = Column(String(50))
    group = Column(String(255))

    # Violation details
    metric_type = Column(String(50), nullable=False)
    alert_reason = Column(String(100), nullable=False)
    alert_field = Column(String(100))
    alert_value = Column(Float)
    threshold_exceeded = Column(Float)
    severity = Column(String(20), nullable=False, default="critical")

    # External ticketing correlation ids
    uuid_open = Column(String(100))
    uuid_closed = Column(String(100))


class ActiveAlert(Base, AlertSnapshotMixin):
    """Currently open critical alert, one per (pdu_id, metric_type, alert_reason)"""

    __tablename__ = "active_critical_alerts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    alert_started_at = Column(DateTime, nullable=False)
    last_updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "pdu_id", "metric_type", "alert_reason", name="uq_active_alert_key"
        ),
        Index("idx_active_alert_site_dc", "site", "dc"),
        Index("idx_active_alert_metric", "metric_type"),
    )

    @property
    def key(self):
        return (self.pdu_id, self.metric_type, self.alert_reason)


class AlertHistory(Base, AlertSnapshotMixin):
    """Permanent record of a closed alert"""

    __tablename__ = "alerts_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Id of the ActiveAlert this row archives; unique so a close can only land once
    alert_id = Column(Uuid, nullable=False, unique=True)

    created_at = Column(DateTime, nullable=False)  # alert_started_at of the alert
    last_updated_at = Column(DateTime)
    resolved_at = Column(DateTime, nullable=False, index=True)
    resolved_by = Column(String(255))
    resolution_type = Column(String(50), nullable=False, default="auto")
    duration_minutes = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes >= 0", name="non_negative_duration"),
        CheckConstraint(
            "resolution_type IN ('auto', 'manual', 'stale')",
            name="valid_resolution_type",
        ),
        Index("idx_alerts_history_pdu_metric", "pdu_id", "metric_type"),
        Index("idx_alerts_history_created_at", "created_at"),
    )
