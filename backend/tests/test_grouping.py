"""Tests for the Country -> Site -> DC -> Gateway rack hierarchy."""
from utils.rack_grouping import (
    PLACEHOLDER,
    chain_members,
    flatten,
    gateway_key,
    group_racks,
    natural_key,
)


def test_every_reading_lands_in_exactly_one_group(make_reading):
    racks = [
        make_reading(pdu_id=f"PDU-{i}", rack_id=f"RACK-{i % 7}", site=f"Site-{i % 3}")
        for i in range(40)
    ]

    grouped = group_racks(racks)
    flat = flatten(grouped)

    assert len(flat) == len(racks)
    assert sorted(r.pdu_id for r in flat) == sorted(r.pdu_id for r in racks)


def test_hierarchy_levels(make_reading):
    racks = [
        make_reading(pdu_id="P1", rack_id="R1"),
        make_reading(pdu_id="P2", rack_id="R2", dc="DC2", gw_name="GW-B", gw_ip="10.0.0.2"),
        make_reading(pdu_id="P3", rack_id="R3", country="Chile", site="Santiago"),
    ]

    grouped = group_racks(racks)

    assert set(grouped) == {"Spain", "Chile"}
    assert set(grouped["Spain"]["Madrid"]) == {"DC1", "DC2"}
    assert list(grouped["Spain"]["Madrid"]["DC2"]) == ["GW-B-10.0.0.2"]
    assert grouped["Chile"]["Santiago"]["DC1"]["GW-A-10.0.0.1"][0][0].pdu_id == "P3"


def test_pdus_of_one_rack_grouped_together(make_reading):
    racks = [
        make_reading(pdu_id="P1-A", rack_id="R1"),
        make_reading(pdu_id="P1-B", rack_id="R1"),
        make_reading(pdu_id="P2", rack_id="R2"),
    ]

    groups = group_racks(racks)["Spain"]["Madrid"]["DC1"]["GW-A-10.0.0.1"]
    assert [[r.pdu_id for r in g] for g in groups] == [["P1-A", "P1-B"], ["P2"]]


def test_missing_location_uses_placeholder(make_reading):
    rack = make_reading(country=None, site="  ", dc=None, gw_name=None, gw_ip=None)

    grouped = group_racks([rack])

    assert gateway_key(rack) == f"{PLACEHOLDER}-{PLACEHOLDER}"
    assert grouped[PLACEHOLDER][PLACEHOLDER][PLACEHOLDER][f"{PLACEHOLDER}-{PLACEHOLDER}"]


def test_groups_sorted_by_chain_then_name(make_reading):
    racks = [
        make_reading(pdu_id="P1", rack_id="R1", chain="C10", name="alpha"),
        make_reading(pdu_id="P2", rack_id="R2", chain="C2", name="zeta"),
        make_reading(pdu_id="P3", rack_id="R3", chain="C2", name="Beta"),
    ]

    groups = group_racks(racks)["Spain"]["Madrid"]["DC1"]["GW-A-10.0.0.1"]
    assert [g[0].pdu_id for g in groups] == ["P3", "P2", "P1"]


def test_natural_key_orders_digit_runs():
    values = ["C10", "C2", "C1", "c3", None]
    assert sorted(values, key=natural_key) == [None, "C1", "C2", "c3", "C10"]


def test_chain_members(make_reading):
    racks = [
        make_reading(pdu_id="P1", rack_id="R1", chain="7", name="Rack 10"),
        make_reading(pdu_id="P1b", rack_id="R1", chain="7", name="Rack 10"),
        make_reading(pdu_id="P2", rack_id="R2", chain="7", name="Rack 9"),
        make_reading(pdu_id="P3", rack_id="R3", chain="7", dc="DC2"),
        make_reading(pdu_id="P4", rack_id="R4", chain="8"),
    ]

    members = chain_members(racks, " 7 ", "DC1")
    assert [m.logical_rack_id for m in members] == ["R2", "R1"]
