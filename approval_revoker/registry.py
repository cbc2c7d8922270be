"""
registry.py
===========

The deduplicated, risk-ordered set of approvals currently shown for one
(address, chain) pair, together with the user's selection.

Ordering is fixed when the set is replaced: highest risk first, collector
order within a risk level. Filters only ever drop entries from that order.
Every selected key refers to an approval that is present; removing an
approval removes its selection entry too.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from approval_revoker.models import Approval, ApprovalKey, RiskLevel

logger = logging.getLogger(__name__)

ALL = "all"


class ApprovalRegistry:
    def __init__(self) -> None:
        self._approvals: Dict[ApprovalKey, Approval] = {}
        self._selected: Dict[ApprovalKey, bool] = {}
        # (checksummed owner, chain id) of the scan the approvals came from
        self.target: Optional[Tuple[str, int]] = None

    def __len__(self) -> int:
        return len(self._approvals)

    def __iter__(self) -> Iterator[Approval]:
        return iter(list(self._approvals.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._approvals

    def get(self, key: ApprovalKey) -> Optional[Approval]:
        return self._approvals.get(key)

    def replace_all(
        self, approvals: Iterable[Approval], target: Optional[Tuple[str, int]] = None
    ) -> None:
        """Swap in a fresh scan result and reset the selection.

        Duplicate keys keep the position of their first occurrence and the
        data of their last one.
        """
        merged: Dict[ApprovalKey, Approval] = {}
        for approval in approvals:
            merged[approval.key] = approval
        ordered = sorted(merged.values(), key=lambda a: -a.risk_level.rank)
        self._approvals = {a.key: a for a in ordered}
        self._selected = {}
        self.target = target
        logger.debug("Registry now holds %d approvals", len(self._approvals))

    def remove_by_key(self, key: ApprovalKey) -> bool:
        """Drop an approval and its selection entry. Returns False if it was absent."""
        self._selected.pop(key, None)
        return self._approvals.pop(key, None) is not None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def toggle_selection(self, key: ApprovalKey) -> bool:
        """Flip the selection of ``key`` and return the new state."""
        if key not in self._approvals:
            raise KeyError(key)
        selected = not self._selected.get(key, False)
        if selected:
            self._selected[key] = True
        else:
            self._selected.pop(key, None)
        return selected

    def set_selection(self, key: ApprovalKey, selected: bool) -> None:
        if key not in self._approvals:
            raise KeyError(key)
        if selected:
            self._selected[key] = True
        else:
            self._selected.pop(key, None)

    def select_where(self, level: Union[str, RiskLevel] = ALL) -> int:
        """Select every approval passing ``filter_by_risk(level)``."""
        matches = self.filter_by_risk(level)
        for approval in matches:
            self._selected[approval.key] = True
        return len(matches)

    def clear_selection(self) -> None:
        self._selected = {}

    def is_selected(self, key: ApprovalKey) -> bool:
        return self._selected.get(key, False)

    def selected_keys(self) -> List[ApprovalKey]:
        return [key for key in self._approvals if self._selected.get(key)]

    def selected_targets(self) -> List[Approval]:
        """Selected approvals, in registry order."""
        return [a for key, a in self._approvals.items() if self._selected.get(key)]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def filter_by_risk(self, level: Union[str, RiskLevel] = ALL) -> List[Approval]:
        if isinstance(level, str) and level.strip().lower() == ALL:
            return list(self._approvals.values())
        wanted = RiskLevel.parse(level)
        return [a for a in self._approvals.values() if a.risk_level is wanted]

    def counts_by_risk(self) -> Dict[RiskLevel, int]:
        counts = {level: 0 for level in RiskLevel}
        for approval in self._approvals.values():
            counts[approval.risk_level] += 1
        return counts
