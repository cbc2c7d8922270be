"""Ownership guard: anyone may view approvals, only the owner may change them."""

from __future__ import annotations

from typing import Optional

from eth_utils import is_address

from approval_revoker.errors import NotOwner


def _canonical(address: Optional[str]) -> Optional[str]:
    """Lower-case 0x form of a real address, None for anything else."""
    if not address:
        return None
    address = address.strip()
    if not is_address(address):
        return None
    address = address.lower()
    if not address.startswith("0x"):
        address = "0x" + address
    return address


def can_mutate(connected_address: Optional[str], active_address: Optional[str]) -> bool:
    """True iff both addresses are present and equal ignoring case."""
    connected = _canonical(connected_address)
    active = _canonical(active_address)
    return connected is not None and active is not None and connected == active


def require_owner(connected_address: Optional[str], active_address: Optional[str]) -> None:
    if not can_mutate(connected_address, active_address):
        raise NotOwner("Connect the wallet you're scanning to revoke.")
