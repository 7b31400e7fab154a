"""
Maintenance windows and the suppression index built from them.

A rack is suppressed while it has a ``MaintenanceRackDetail`` row, whether it
was added on its own or as part of a chain.  The in-memory index is rebuilt
from the table after every mutation and swapped in one assignment, so readers
always see either the old or the new snapshot.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional, Sequence
from uuid import UUID

from models.maintenance import (
    MaintenanceEntry,
    MaintenanceHistory,
    MaintenanceRackDetail,
)
from schemas.maintenance import MaintenanceEntryType
from schemas.reading import Reading
from schemas.user import Actor
from services.exceptions import (
    CapabilityDenied,
    MaintenanceConflict,
    NotFound,
    StaleMaintenanceMutation,
)
from sqlalchemy.orm import Session, selectinload
from utils.clock import minutes_between, utcnow
from utils.rack_grouping import chain_members

logger = logging.getLogger(__name__)


class MaintenanceIndex:
    """Set of suppressed rack ids"""

    def __init__(self):
        self._snapshot: FrozenSet[str] = frozenset()

    def rebuild(self, db: Session) -> FrozenSet[str]:
        rows = db.query(MaintenanceRackDetail.rack_id).all()
        snapshot = frozenset(str(rack_id).strip() for (rack_id,) in rows if rack_id)
        self._snapshot = snapshot
        return snapshot

    def is_suppressed(self, rack_id: Optional[str]) -> bool:
        if not rack_id:
            return False
        return str(rack_id).strip() in self._snapshot

    @property
    def snapshot(self) -> FrozenSet[str]:
        return self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot)


@dataclass
class MaintenanceResult:
    message: str
    entry_id: Optional[UUID] = None
    racks_affected: int = 0
    changed: bool = True


def ensure_can_mutate(actor: Optional[Actor], action: str):
    """Raise CapabilityDenied before any state change"""
    if actor is None:
        raise CapabilityDenied(None, action, "no user supplied")
    if not actor.can_mutate:
        raise CapabilityDenied(
            actor.username, action, f"role {actor.role.value} is read-only"
        )


def _detail_from_reading(reading: Reading, added_at: datetime) -> MaintenanceRackDetail:
    return MaintenanceRackDetail(
        rack_id=reading.logical_rack_id,
        pdu_id=reading.pdu_id,
        name=reading.name,
        country=reading.country,
        site=reading.site,
        dc=reading.dc,
        phase=reading.phase,
        chain=reading.chain,
        node=reading.node,
        serial=reading.serial,
        gw_name=reading.gw_name,
        gw_ip=reading.gw_ip,
        added_at=added_at,
    )


def _archive(
    db: Session,
    entry: MaintenanceEntry,
    detail: MaintenanceRackDetail,
    ended_by: Optional[str],
    ended_at: datetime,
) -> MaintenanceHistory:
    started_at = detail.added_at or entry.started_at
    record = MaintenanceHistory(
        original_entry_id=entry.id,
        entry_type=entry.entry_type,
        rack_id=detail.rack_id,
        rack_name=detail.name,
        country=detail.country,
        site=detail.site or entry.site,
        dc=detail.dc or entry.dc,
        phase=detail.phase,
        chain=detail.chain or entry.chain,
        node=detail.node,
        gw_name=detail.gw_name,
        gw_ip=detail.gw_ip,
        reason=entry.reason,
        started_by=entry.started_by,
        ended_by=ended_by,
        started_at=started_at,
        ended_at=ended_at,
        duration_minutes=minutes_between(started_at, ended_at),
    )
    db.add(record)
    return record


class MaintenanceService:
    """Start and end maintenance windows; sole writer of maintenance tables"""

    def __init__(self, index: Optional[MaintenanceIndex] = None):
        self.index = index or MaintenanceIndex()

    def is_suppressed(self, rack_id: Optional[str]) -> bool:
        return self.index.is_suppressed(rack_id)

    def refresh_index(self, db: Session) -> FrozenSet[str]:
        snapshot = self.index.rebuild(db)
        logger.debug(f"Maintenance index rebuilt with {len(snapshot)} racks")
        return snapshot

    def _committed(self, db: Session):
        db.commit()
        self.refresh_index(db)

    def list_entries(self, db: Session, site: Optional[str] = None) -> List[MaintenanceEntry]:
        query = db.query(MaintenanceEntry).options(selectinload(MaintenanceEntry.racks))
        if site:
            query = query.filter(MaintenanceEntry.site == site)
        return query.order_by(MaintenanceEntry.started_at.desc()).all()

    def get_history(
        self,
        db: Session,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        site: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[MaintenanceHistory]:
        query = db.query(MaintenanceHistory)
        if start:
            query = query.filter(MaintenanceHistory.ended_at >= start)
        if end:
            query = query.filter(MaintenanceHistory.ended_at <= end)
        if site:
            query = query.filter(MaintenanceHistory.site == site)
        return (
            query.order_by(MaintenanceHistory.ended_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def start_rack(
        self, db: Session, rack: Reading, reason: str, actor: Actor
    ) -> MaintenanceResult:
        """Put a single rack under maintenance"""
        ensure_can_mutate(actor, "start rack maintenance")
        rack_id = rack.logical_rack_id

        try:
            existing = (
                db.query(MaintenanceRackDetail)
                .filter(MaintenanceRackDetail.rack_id == rack_id)
                .first()
            )
            if existing:
                raise MaintenanceConflict(f"Rack {rack_id} is already in maintenance")

            now = utcnow()
            entry = MaintenanceEntry(
                entry_type=MaintenanceEntryType.INDIVIDUAL_RACK.value,
                rack_id=rack_id,
                chain=rack.chain,
                dc=rack.dc,
                site=rack.site,
                reason=reason,
                started_by=actor.username,
                started_at=now,
            )
            entry.racks.append(_detail_from_reading(rack, now))
            db.add(entry)
            self._committed(db)

            logger.info(f"🔧 Rack {rack_id} put in maintenance by {actor.username}")
            return MaintenanceResult(
                message=f"Rack {rack_id} added to maintenance",
                entry_id=entry.id,
                racks_affected=1,
            )

        except MaintenanceConflict:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to start maintenance for rack {rack_id}: {e}")
            raise

    def start_chain(
        self,
        db: Session,
        chain: str,
        dc: str,
        racks: Sequence[Reading],
        reason: str,
        actor: Actor,
        site: Optional[str] = None,
    ) -> MaintenanceResult:
        """Put every known rack of a chain in one DC under maintenance"""
        ensure_can_mutate(actor, "start chain maintenance")

        try:
            members = chain_members(racks, chain, dc)
            if not members:
                raise NotFound(f"No racks found for chain {chain} in DC {dc}")

            member_ids = [m.logical_rack_id for m in members]
            busy = {
                rack_id
                for (rack_id,) in db.query(MaintenanceRackDetail.rack_id)
                .filter(MaintenanceRackDetail.rack_id.in_(member_ids))
                .all()
            }
            available = [m for m in members if m.logical_rack_id not in busy]
            if not available:
                raise MaintenanceConflict(
                    f"All racks of chain {chain} in DC {dc} are already in maintenance"
                )

            now = utcnow()
            entry = MaintenanceEntry(
                entry_type=MaintenanceEntryType.CHAIN.value,
                chain=chain,
                dc=dc,
                site=site or available[0].site,
                reason=reason,
                started_by=actor.username,
                started_at=now,
            )
            for rack in available:
                entry.racks.append(_detail_from_reading(rack, now))
            db.add(entry)
            self._committed(db)

            skipped = len(members) - len(available)
            logger.info(
                f"🔧 Chain {chain} ({dc}) put in maintenance by {actor.username}: "
                f"{len(available)} racks, {skipped} already in maintenance"
            )
            message = f"Chain {chain} in DC {dc} added to maintenance ({len(available)} racks)"
            if skipped:
                message += f", {skipped} already in maintenance"
            return MaintenanceResult(
                message=message, entry_id=entry.id, racks_affected=len(available)
            )

        except (MaintenanceConflict, NotFound):
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to start maintenance for chain {chain} ({dc}): {e}")
            raise

    def remove_rack(self, db: Session, rack_id: str, actor: Actor) -> MaintenanceResult:
        """
        End maintenance for one rack.
        The rack is archived; its entry closes when no rack is left in it.
        Removing a rack that is not in maintenance is a successful no-op.
        """
        ensure_can_mutate(actor, "end rack maintenance")
        rack_id = str(rack_id).strip()

        try:
            detail = (
                db.query(MaintenanceRackDetail)
                .filter(MaintenanceRackDetail.rack_id == rack_id)
                .first()
            )
            if detail is None:
                raise StaleMaintenanceMutation(f"Rack {rack_id} is not in maintenance")

            entry = detail.entry
            now = utcnow()
            _archive(db, entry, detail, actor.username, now)
            entry.racks.remove(detail)

            entry_closed = not entry.racks
            if entry_closed:
                db.delete(entry)

            self._committed(db)
            logger.info(
                f"✅ Rack {rack_id} removed from maintenance by {actor.username}"
                + (" (entry closed)" if entry_closed else "")
            )
            return MaintenanceResult(
                message=f"Rack {rack_id} removed from maintenance",
                entry_id=entry.id,
                racks_affected=1,
            )

        except StaleMaintenanceMutation as e:
            db.rollback()
            logger.info(f"{e}, nothing to do")
            return MaintenanceResult(message=str(e), changed=False)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to remove rack {rack_id} from maintenance: {e}")
            raise

    def end_entry(self, db: Session, entry_id: UUID, actor: Actor) -> MaintenanceResult:
        """End a whole entry, archiving each rack still covered by it"""
        ensure_can_mutate(actor, "end maintenance entry")

        try:
            entry = db.get(MaintenanceEntry, entry_id)
            if entry is None:
                raise StaleMaintenanceMutation(f"Maintenance entry {entry_id} no longer exists")

            count = self._close_entries(db, [entry], actor.username)
            self._committed(db)

            logger.info(
                f"✅ Maintenance entry {entry_id} ended by {actor.username} ({count} racks)"
            )
            return MaintenanceResult(
                message=f"Maintenance entry {entry_id} ended ({count} racks)",
                entry_id=entry_id,
                racks_affected=count,
            )

        except StaleMaintenanceMutation as e:
            db.rollback()
            logger.info(f"{e}, nothing to do")
            return MaintenanceResult(message=str(e), entry_id=entry_id, changed=False)
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to end maintenance entry {entry_id}: {e}")
            raise

    def end_all(self, db: Session, actor: Actor) -> MaintenanceResult:
        """End every entry, limited to the assigned sites of non-administrators"""
        ensure_can_mutate(actor, "end all maintenance")
        sites = actor.site_scope

        try:
            query = db.query(MaintenanceEntry).options(selectinload(MaintenanceEntry.racks))
            if sites is not None:
                query = query.filter(MaintenanceEntry.site.in_(sites))
            entries = query.all()

            if not entries:
                return MaintenanceResult(
                    message="No maintenance entries to remove", changed=False
                )

            count = self._close_entries(db, entries, actor.username)
            self._committed(db)

            scope = f"sites {', '.join(sites)}" if sites is not None else "all sites"
            logger.info(
                f"✅ {len(entries)} maintenance entries ended by {actor.username} "
                f"for {scope} ({count} racks)"
            )
            return MaintenanceResult(
                message=f"Maintenance entries removed for {scope} "
                f"({len(entries)} entries, {count} racks)",
                racks_affected=count,
            )

        except Exception as e:
            db.rollback()
            logger.error(f"Failed to end all maintenance entries: {e}")
            raise

    @staticmethod
    def _close_entries(
        db: Session, entries: Iterable[MaintenanceEntry], ended_by: Optional[str]
    ) -> int:
        now = utcnow()
        count = 0
        for entry in entries:
            for detail in list(entry.racks):
                _archive(db, entry, detail, ended_by, now)
                count += 1
            db.delete(entry)
        return count


# Global instance
maintenance_service = MaintenanceService()
