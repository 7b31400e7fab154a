import logging
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from const.thresholds import DEFAULT_THRESHOLDS, ThresholdKey, get_default_threshold
from models.threshold import RackThresholdOverride, ThresholdConfig
from schemas.threshold import RackThresholdItem
from services.exceptions import ConfigurationMissing
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class EffectiveThresholds:
    """Global thresholds with the overrides of one rack applied"""

    def __init__(
        self,
        values: Mapping[ThresholdKey, float],
        rack_id: Optional[str] = None,
        overridden: Iterable[ThresholdKey] = (),
    ):
        self._values: Dict[ThresholdKey, float] = dict(values)
        self.rack_id = rack_id
        self.overridden: FrozenSet[ThresholdKey] = frozenset(overridden)

    def require(self, key: ThresholdKey) -> float:
        try:
            return self._values[key]
        except KeyError:
            raise ConfigurationMissing(key.key, self.rack_id) from None

    def get(self, key: ThresholdKey, default: Optional[float] = None) -> Optional[float]:
        return self._values.get(key, default)

    def __contains__(self, key: ThresholdKey) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def as_dict(self) -> Dict[str, float]:
        return {key.key: value for key, value in sorted(self._values.items())}


class ThresholdService:
    """Global threshold configuration, per-rack overrides and their resolution"""

    @staticmethod
    def seed_defaults(db: Session) -> int:
        """Insert the default value of every key that is not configured yet"""
        try:
            existing = {row[0] for row in db.query(ThresholdConfig.threshold_key).all()}
            added = 0
            for key, config in DEFAULT_THRESHOLDS.items():
                if key.key in existing:
                    continue
                db.add(
                    ThresholdConfig(
                        threshold_key=key.key,
                        value=config["value"],
                        unit=config.get("unit"),
                        description=config.get("description"),
                    )
                )
                added += 1

            db.commit()
            return added

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to seed default thresholds: {e}")
            raise

    @staticmethod
    def get_thresholds(db: Session) -> List[ThresholdConfig]:
        return db.query(ThresholdConfig).order_by(ThresholdConfig.threshold_key).all()

    @staticmethod
    def _global_map(db: Session) -> Dict[ThresholdKey, float]:
        values = {}
        for threshold_key, value in db.query(
            ThresholdConfig.threshold_key, ThresholdConfig.value
        ).all():
            try:
                values[ThresholdKey.parse(threshold_key)] = value
            except ValueError:
                logger.warning(f"Ignoring unknown threshold key {threshold_key!r}")
        return values

    @staticmethod
    def update_thresholds(db: Session, values: Mapping[str, float]) -> List[ThresholdConfig]:
        """Set global values; keys missing from the table are created"""
        try:
            parsed = {ThresholdKey.parse(k): v for k, v in values.items()}
            keys = list(parsed)
            rows = {
                row.threshold_key: row
                for row in db.query(ThresholdConfig)
                .filter(ThresholdConfig.threshold_key.in_([k.key for k in keys]))
                .all()
            }

            updated = []
            for key in keys:
                row = rows.get(key.key)
                if row is None:
                    default = get_default_threshold(key)
                    row = ThresholdConfig(
                        threshold_key=key.key,
                        unit=default.get("unit"),
                        description=default.get("description"),
                    )
                    db.add(row)
                row.value = float(parsed[key])
                updated.append(row)

            db.commit()
            for row in updated:
                db.refresh(row)
            logger.info(f"Updated {len(updated)} global thresholds")
            return updated

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to update thresholds: {e}")
            raise

    @staticmethod
    def resolve(db: Session, rack_id: str) -> EffectiveThresholds:
        """Effective thresholds of one rack"""
        return ThresholdService.resolve_many(db, [rack_id])[rack_id]

    @staticmethod
    def resolve_many(db: Session, rack_ids: Iterable[str]) -> Dict[str, EffectiveThresholds]:
        """Effective thresholds of several racks with a single override query"""
        rack_ids = list(dict.fromkeys(rack_ids))
        global_values = ThresholdService._global_map(db)

        overrides: Dict[str, Dict[ThresholdKey, float]] = {}
        if rack_ids:
            rows = (
                db.query(RackThresholdOverride)
                .filter(RackThresholdOverride.rack_id.in_(rack_ids))
                .all()
            )
            for row in rows:
                try:
                    key = ThresholdKey.parse(row.threshold_key)
                except ValueError:
                    logger.warning(
                        f"Ignoring unknown override key {row.threshold_key!r} for rack {row.rack_id}"
                    )
                    continue
                overrides.setdefault(row.rack_id, {})[key] = row.value

        resolved = {}
        for rack_id in rack_ids:
            rack_overrides = overrides.get(rack_id, {})
            values = dict(global_values)
            values.update(rack_overrides)
            resolved[rack_id] = EffectiveThresholds(values, rack_id, rack_overrides)
        return resolved

    @staticmethod
    def get_rack_overrides(db: Session, rack_id: str) -> List[RackThresholdOverride]:
        return (
            db.query(RackThresholdOverride)
            .filter(RackThresholdOverride.rack_id == rack_id)
            .order_by(RackThresholdOverride.threshold_key)
            .all()
        )

    @staticmethod
    def set_rack_overrides(
        db: Session, rack_id: str, items: Iterable[RackThresholdItem]
    ) -> List[RackThresholdOverride]:
        """Create or replace overrides of one rack"""
        try:
            existing = {
                row.threshold_key: row
                for row in ThresholdService.get_rack_overrides(db, rack_id)
            }

            saved = []
            for item in items:
                row = existing.get(item.threshold_key)
                if row is None:
                    row = RackThresholdOverride(
                        rack_id=rack_id, threshold_key=item.threshold_key
                    )
                    db.add(row)
                    existing[item.threshold_key] = row
                row.value = item.value
                if item.unit is not None:
                    row.unit = item.unit
                if item.description is not None:
                    row.description = item.description
                saved.append(row)

            db.commit()
            for row in saved:
                db.refresh(row)
            logger.info(f"Saved {len(saved)} threshold overrides for rack {rack_id}")
            return saved

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to save overrides for rack {rack_id}: {e}")
            raise

    @staticmethod
    def delete_rack_overrides(
        db: Session, rack_id: str, threshold_keys: Optional[Iterable[str]] = None
    ) -> int:
        """Remove overrides of a rack (all of them when no keys are given)"""
        try:
            query = db.query(RackThresholdOverride).filter(
                RackThresholdOverride.rack_id == rack_id
            )
            if threshold_keys is not None:
                keys = [ThresholdKey.parse(k).key for k in threshold_keys]
                query = query.filter(RackThresholdOverride.threshold_key.in_(keys))

            deleted = query.delete(synchronize_session=False)
            db.commit()
            if deleted:
                logger.info(f"Removed {deleted} threshold overrides for rack {rack_id}")
            return deleted

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to delete overrides for rack {rack_id}: {e}")
            raise


# Global instance
threshold_service = ThresholdService()
