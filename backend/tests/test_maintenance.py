"""Tests for maintenance windows and rack suppression."""
import pytest
from models import MaintenanceEntry, MaintenanceHistory, MaintenanceRackDetail
from schemas.user import Actor
from services.exceptions import CapabilityDenied, MaintenanceConflict, NotFound
from services.maintenance_service import MaintenanceIndex


def _chain_racks(make_reading):
    return [
        make_reading(pdu_id="PDU-A", rack_id="RACK-A", name="Rack A", chain="C7"),
        make_reading(pdu_id="PDU-B", rack_id="RACK-B", name="Rack B", chain="C7"),
        # Second PDU of rack B; still one logical rack
        make_reading(pdu_id="PDU-B2", rack_id="RACK-B", name="Rack B", chain="C7"),
        make_reading(pdu_id="PDU-X", rack_id="RACK-X", name="Rack X", chain="C8"),
        make_reading(pdu_id="PDU-Y", rack_id="RACK-Y", name="Rack Y", chain="C7", dc="DC2"),
    ]


# ── Single rack ─────────────────────────────────────────

def test_start_rack_suppresses_it(db, maintenance, make_reading, operator):
    result = maintenance.start_rack(db, make_reading(), "Replacing PSU", operator)

    assert result.changed
    assert result.racks_affected == 1
    assert maintenance.is_suppressed("RACK-01")
    assert maintenance.is_suppressed(" RACK-01 ")
    assert not maintenance.is_suppressed("RACK-02")

    entry = db.query(MaintenanceEntry).one()
    assert entry.entry_type == "individual_rack"
    assert entry.started_by == "ops"
    assert [r.rack_id for r in entry.racks] == ["RACK-01"]


def test_same_rack_twice_conflicts(db, maintenance, make_reading, operator):
    maintenance.start_rack(db, make_reading(), "First", operator)
    with pytest.raises(MaintenanceConflict):
        maintenance.start_rack(db, make_reading(), "Second", operator)
    assert db.query(MaintenanceEntry).count() == 1


def test_remove_rack_archives_and_closes_entry(db, maintenance, make_reading, operator):
    maintenance.start_rack(db, make_reading(), "PSU", operator)

    result = maintenance.remove_rack(db, "RACK-01", operator)

    assert result.changed
    assert not maintenance.is_suppressed("RACK-01")
    assert db.query(MaintenanceEntry).count() == 0
    history = db.query(MaintenanceHistory).one()
    assert history.rack_id == "RACK-01"
    assert history.ended_by == "ops"
    assert history.reason == "PSU"
    assert history.duration_minutes >= 0


def test_removing_unknown_rack_is_a_noop(db, maintenance, operator):
    result = maintenance.remove_rack(db, "RACK-404", operator)
    assert not result.changed
    assert "not in maintenance" in result.message
    assert db.query(MaintenanceHistory).count() == 0


# ── Chains ──────────────────────────────────────────────

def test_chain_covers_each_logical_rack_once(db, maintenance, make_reading, operator):
    result = maintenance.start_chain(
        db, "C7", "DC1", _chain_racks(make_reading), "Chain work", operator
    )

    assert result.racks_affected == 2
    assert maintenance.index.snapshot == frozenset({"RACK-A", "RACK-B"})
    entry = db.query(MaintenanceEntry).one()
    assert entry.entry_type == "chain"
    assert (entry.chain, entry.dc, entry.site) == ("C7", "DC1", "Madrid")


def test_chain_remove_one_rack_then_end_entry(db, maintenance, make_reading, operator):
    maintenance.start_chain(db, "C7", "DC1", _chain_racks(make_reading), "Chain work", operator)
    entry_id = db.query(MaintenanceEntry.id).scalar()

    maintenance.remove_rack(db, "RACK-A", operator)
    assert not maintenance.is_suppressed("RACK-A")
    assert maintenance.is_suppressed("RACK-B")

    result = maintenance.end_entry(db, entry_id, operator)
    assert result.racks_affected == 1
    assert not maintenance.is_suppressed("RACK-B")

    archived = db.query(MaintenanceHistory).order_by(MaintenanceHistory.id).all()
    assert [h.rack_id for h in archived] == ["RACK-A", "RACK-B"]
    assert all(h.original_entry_id == entry_id for h in archived)
    assert db.query(MaintenanceEntry).count() == 0
    assert db.query(MaintenanceRackDetail).count() == 0


def test_chain_skips_racks_already_in_maintenance(db, maintenance, make_reading, operator):
    racks = _chain_racks(make_reading)
    maintenance.start_rack(db, racks[0], "Single", operator)

    result = maintenance.start_chain(db, "C7", "DC1", racks, "Chain work", operator)

    assert result.racks_affected == 1
    assert "1 already in maintenance" in result.message
    assert db.query(MaintenanceEntry).count() == 2


def test_chain_fully_busy_conflicts(db, maintenance, make_reading, operator):
    racks = _chain_racks(make_reading)
    maintenance.start_chain(db, "C7", "DC1", racks, "First", operator)
    with pytest.raises(MaintenanceConflict):
        maintenance.start_chain(db, "C7", "DC1", racks, "Again", operator)


def test_unknown_chain_not_found(db, maintenance, make_reading, operator):
    with pytest.raises(NotFound):
        maintenance.start_chain(db, "C99", "DC1", _chain_racks(make_reading), "x", operator)


def test_ending_missing_entry_is_a_noop(db, maintenance, operator):
    import uuid

    result = maintenance.end_entry(db, uuid.uuid4(), operator)
    assert not result.changed


# ── End all and permissions ─────────────────────────────

def test_end_all_scoped_to_assigned_sites(db, maintenance, make_reading, admin):
    maintenance.start_rack(db, make_reading(rack_id="RACK-M"), "x", admin)
    maintenance.start_rack(
        db, make_reading(pdu_id="PDU-2", rack_id="RACK-B", site="Barcelona"), "x", admin
    )

    local = Actor(username="madrid-ops", role="Technician", assigned_sites=["Madrid"])
    result = maintenance.end_all(db, local)

    assert result.racks_affected == 1
    assert maintenance.index.snapshot == frozenset({"RACK-B"})

    result = maintenance.end_all(db, admin)
    assert result.racks_affected == 1
    assert len(maintenance.index) == 0

    result = maintenance.end_all(db, admin)
    assert not result.changed
    assert result.message == "No maintenance entries to remove"


def test_observer_cannot_mutate(db, maintenance, make_reading, observer):
    with pytest.raises(CapabilityDenied) as exc:
        maintenance.start_rack(db, make_reading(), "x", observer)
    assert "read-only" in str(exc.value)
    assert db.query(MaintenanceEntry).count() == 0

    with pytest.raises(CapabilityDenied):
        maintenance.remove_rack(db, "RACK-01", observer)
    with pytest.raises(CapabilityDenied):
        maintenance.end_all(db, None)


def test_index_rebuild_reflects_other_writers(db, maintenance, make_reading, operator):
    maintenance.start_rack(db, make_reading(), "x", operator)

    index = MaintenanceIndex()
    assert not index.is_suppressed("RACK-01")
    assert index.rebuild(db) == frozenset({"RACK-01"})
    assert index.is_suppressed("RACK-01")
    assert not index.is_suppressed(None)
