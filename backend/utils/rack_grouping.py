"""
Rack grouping utilities
Builds the Country -> Site -> DC -> Gateway -> logical rack hierarchy shown by the console
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from schemas.reading import Reading

PLACEHOLDER = "N/A"

R = TypeVar("R", bound=Reading)

# country -> site -> dc -> gateway key -> logical rack groups
Grouped = Dict[str, Dict[str, Dict[str, Dict[str, List[List[R]]]]]]

_DIGITS = re.compile(r"(\d+)")


def _label(value: Optional[str]) -> str:
    if value is None:
        return PLACEHOLDER
    value = str(value).strip()
    return value or PLACEHOLDER


def gateway_key(rack: Reading) -> str:
    """'{gw_name}-{gw_ip}', missing parts replaced by the placeholder"""
    return f"{_label(rack.gw_name)}-{_label(rack.gw_ip)}"


def natural_key(value: Optional[str]) -> Tuple:
    """Sort key comparing digit runs numerically ('C2' < 'C10')"""
    parts = _DIGITS.split((value or "").strip().lower())
    # Tag each part so numbers and text never compare against each other
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


def _group_order(group: Sequence[Reading]) -> Tuple:
    first = group[0]
    return natural_key(first.chain), (first.name or "").lower()


def group_racks(racks: Iterable[R]) -> Grouped:
    """
    Group readings by country, site, dc and gateway, then by logical rack.

    A logical rack gathers every reading sharing the same rack_id (pdu id when
    the rack id is missing), so a rack fed by two PDUs shows up as one group.
    Every input reading lands in exactly one leaf group.
    """
    buckets: Dict[Tuple[str, str, str, str], Dict[str, List[R]]] = {}

    for rack in racks:
        location = (
            _label(rack.country),
            _label(rack.site),
            _label(rack.dc),
            gateway_key(rack),
        )
        buckets.setdefault(location, {}).setdefault(rack.logical_rack_id, []).append(
            rack
        )

    grouped: Grouped = {}
    for (country, site, dc, gateway), logical_racks in buckets.items():
        groups = sorted(logical_racks.values(), key=_group_order)
        grouped.setdefault(country, {}).setdefault(site, {}).setdefault(dc, {})[
            gateway
        ] = groups

    return grouped


def flatten(grouped: Grouped) -> List[R]:
    """All readings of a grouped structure, in display order"""
    racks: List[R] = []
    for sites in grouped.values():
        for dcs in sites.values():
            for gateways in dcs.values():
                for groups in gateways.values():
                    for group in groups:
                        racks.extend(group)
    return racks


def chain_members(racks: Iterable[R], chain: str, dc: str) -> List[R]:
    """Readings belonging to one chain of one DC, one per logical rack"""
    chain = str(chain).strip()
    dc = str(dc).strip()

    members: Dict[str, R] = {}
    for rack in racks:
        if (rack.chain or "").strip() != chain or (rack.dc or "").strip() != dc:
            continue
        members.setdefault(rack.logical_rack_id, rack)

    return sorted(members.values(), key=lambda r: (natural_key(r.name), r.logical_rack_id))
