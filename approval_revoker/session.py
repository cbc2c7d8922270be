"""
session.py
==========

The session controller. It owns the :class:`WalletContext` and the
:class:`ApprovalRegistry` and is the only thing that mutates them, through
two paths: a scan (collect, normalise, ``replace_all``) and a revocation run.

A scan records the (address, chain) it started for. If the context has moved
to another target by the time the collector returns, the result is stale and
is dropped instead of replacing what is on screen. A failed scan leaves the
registry as it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from approval_revoker.chains import Chain
from approval_revoker.collectors import ApprovalCollector
from approval_revoker.errors import NotOwner
from approval_revoker.guard import can_mutate
from approval_revoker.models import parse_address
from approval_revoker.normalizer import normalize_all
from approval_revoker.registry import ApprovalRegistry
from approval_revoker.revocation import (
    ProgressCallback,
    RevocationOrchestrator,
    RevocationOutcome,
    Signer,
)

logger = logging.getLogger(__name__)


@dataclass
class WalletContext:
    active_chain: Chain
    connected_address: Optional[str] = None
    scan_address: str = ""
    active_address: Optional[str] = None

    @property
    def target(self) -> Optional[Tuple[str, int]]:
        if self.active_address is None:
            return None
        return (self.active_address, self.active_chain.chain_id)


@dataclass(frozen=True)
class ScanResult:
    address: str
    chain: Chain
    count: int
    applied: bool  # False when the result was stale and discarded


class Session:
    def __init__(
        self,
        chain: Chain,
        collector: ApprovalCollector,
        registry: Optional[ApprovalRegistry] = None,
        orchestrator: Optional[RevocationOrchestrator] = None,
    ) -> None:
        self.context = WalletContext(active_chain=chain)
        self.collector = collector
        self.registry = registry or ApprovalRegistry()
        self.orchestrator = orchestrator or RevocationOrchestrator()
        self.signer: Optional[Signer] = None
        self._manually_scanned = False

    # ------------------------------------------------------------------
    # Context changes
    # ------------------------------------------------------------------

    def _activate(self, address: str, chain: Chain) -> None:
        if (address, chain.chain_id) != self.context.target:
            self.registry.clear_selection()
        self.context.active_address = address
        self.context.active_chain = chain

    def switch_chain(self, chain: Chain, collector: Optional[ApprovalCollector] = None) -> None:
        """Point the session at another chain; the next scan uses ``collector`` if given."""
        if chain.chain_id != self.context.active_chain.chain_id:
            self.registry.clear_selection()
        self.context.active_chain = chain
        if collector is not None:
            self.collector = collector

    def connect(self, signer: Signer, scan: bool = True) -> Optional[ScanResult]:
        """Adopt a signing capability.

        Unless the user already scanned an address by hand, the connected
        wallet becomes the scan target and is scanned right away.
        """
        self.signer = signer
        self.context.connected_address = parse_address(signer.address)
        logger.info("Connected %s", self.context.connected_address)
        if scan and not self._manually_scanned:
            self.context.scan_address = self.context.connected_address
            return self.scan_address(self.context.connected_address)
        return None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, raw_address: Optional[str] = None) -> ScanResult:
        """Validate free-text input and scan it. Raises InvalidAddress on bad input."""
        if raw_address is not None:
            self.context.scan_address = raw_address
        address = parse_address(self.context.scan_address)
        self._manually_scanned = True
        return self.scan_address(address)

    def scan_address(self, address: str) -> ScanResult:
        chain = self.context.active_chain
        self._activate(address, chain)
        started_for = (address, chain.chain_id)

        facts = self.collector.collect(address, chain)
        approvals = normalize_all(facts)

        if self.context.target != started_for:
            logger.warning(
                "Discarding stale scan for %s on %s; active target changed",
                address, chain.name,
            )
            return ScanResult(address, chain, len(approvals), applied=False)
        self.registry.replace_all(approvals, target=started_for)
        logger.info("Found %d approvals for %s on %s", len(approvals), address, chain.name)
        return ScanResult(address, chain, len(approvals), applied=True)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    @property
    def can_revoke(self) -> bool:
        return can_mutate(self.context.connected_address, self.context.active_address)

    def revoke_selected(
        self, on_progress: Optional[ProgressCallback] = None
    ) -> RevocationOutcome:
        """Revoke the selected approvals with the connected signer."""
        if self.signer is None or not self.can_revoke:
            raise NotOwner("Connect the wallet you're scanning to revoke.")
        if self.registry.target != self.context.target:
            # what is listed belongs to an earlier target whose re-scan failed
            raise NotOwner("Listed approvals do not belong to the active wallet; scan again.")
        return self.orchestrator.revoke(
            self.registry.selected_targets(),
            self.signer,
            self.registry,
            owner=self.context.active_address,
            on_progress=on_progress,
        )
