"""Fold raw link observations into the per-link backlink index.

The index of a target domain is always rebuilt from its full observation
history, so running the reduction twice over the same data gives the same
rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple


@dataclass(frozen=True)
class Observation:
    scan_id: int
    scanned_at: datetime
    linking_domain: str
    linking_url: str
    link_type: str = "other"
    anchor: Optional[str] = None
    nofollow: bool = False
    sponsored: bool = False
    ugc: bool = False


@dataclass
class IndexedLinkRow:
    target_domain: str
    linking_domain: str
    linking_url: str
    first_seen_at: datetime
    last_seen_at: datetime
    total_scans_seen: int
    last_scan_id: int
    last_scan_at: datetime
    link_type: str = "other"
    anchor: Optional[str] = None
    nofollow: bool = False
    sponsored: bool = False
    ugc: bool = False


def _is_newer(candidate: Observation, current: Observation) -> bool:
    # equal timestamps resolve to the highest scan id
    return (candidate.scanned_at, candidate.scan_id) > (current.scanned_at, current.scan_id)


def reduce_observations(target_domain: str, observations: Iterable[Observation]) -> List[IndexedLinkRow]:
    """Group observations by (linking domain, linking URL).

    first/last seen are the min/max scan timestamps, ``total_scans_seen`` the
    number of distinct scans containing the link, and the last scan is the
    one at the maximum timestamp. Rows come out sorted by linking domain then
    URL.
    """
    first_seen: Dict[Tuple[str, str], datetime] = {}
    latest: Dict[Tuple[str, str], Observation] = {}
    scans: Dict[Tuple[str, str], Set[int]] = {}

    for obs in observations:
        if not obs.linking_domain or not obs.linking_url:
            continue

        key = (obs.linking_domain, obs.linking_url)
        if key not in latest:
            first_seen[key] = obs.scanned_at
            latest[key] = obs
            scans[key] = {obs.scan_id}
            continue

        scans[key].add(obs.scan_id)
        if obs.scanned_at < first_seen[key]:
            first_seen[key] = obs.scanned_at
        if _is_newer(obs, latest[key]):
            latest[key] = obs

    rows = []
    for key in sorted(latest):
        last = latest[key]
        rows.append(
            IndexedLinkRow(
                target_domain=target_domain,
                linking_domain=key[0],
                linking_url=key[1],
                first_seen_at=first_seen[key],
                last_seen_at=last.scanned_at,
                total_scans_seen=len(scans[key]),
                last_scan_id=last.scan_id,
                last_scan_at=last.scanned_at,
                link_type=last.link_type,
                anchor=last.anchor,
                nofollow=last.nofollow,
                sponsored=last.sponsored,
                ugc=last.ugc,
            )
        )
    return rows
