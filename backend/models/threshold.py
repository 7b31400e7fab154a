from database import Base, TimestampMixin
from sqlalchemy import Column, Float, Index, Integer, String, Text, UniqueConstraint


class ThresholdConfig(Base, TimestampMixin):
    """Global threshold value for one key (never deleted, only updated)"""

    __tablename__ = "threshold_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    threshold_key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Float, nullable=False)
    unit = Column(String(20))
    description = Column(Text)


class RackThresholdOverride(Base, TimestampMixin):
    """Per-rack replacement of a global threshold value"""

    __tablename__ = "rack_threshold_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rack_id = Column(String(255), nullable=False, index=True)
    threshold_key = Column(String(100), nullable=False)
    value = Column(Float, nullable=False)
    unit = Column(String(20))
    description = Column(Text)

    __table_args__ = (
        UniqueConstraint("rack_id", "threshold_key", name="uq_rack_threshold_key"),
        Index("idx_rack_threshold_key", "threshold_key"),
    )
