"""
revocation.py
=============

Sequential, fail-stop revocation of selected approvals.

Each target is revoked with ``approve(spender, 0)`` on its token contract.
Transactions are submitted one at a time and each is confirmed before the
next is signed, so nonces stay ordered and the signer is prompted at most
once per target. The first failure (a declined signature, a submission
error, a reverted or unconfirmed transaction) stops the run; approvals
revoked before it stay revoked and are already gone from the registry.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from eth_account import Account
from eth_utils import to_checksum_address

from approval_revoker.errors import (
    InvalidJobTransition,
    NoTargets,
    RevocationInProgress,
    RPCError,
    TransactionDeclinedOrFailed,
)
from approval_revoker.guard import require_owner
from approval_revoker.models import Approval, ApprovalKey, format_key
from approval_revoker.registry import ApprovalRegistry
from approval_revoker.rpc import APPROVE_SELECTOR, EthereumRPC, build_call_data

logger = logging.getLogger(__name__)

GAS_LIMIT = 100000  # fallback gas limit for approve transactions


# ----------------------------------------------------------------------------
# Job state machine
# ----------------------------------------------------------------------------

class JobStatus(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


@dataclass
class RevocationJob:
    """Progress of one run: Idle -> Running -> Completed | Aborted."""

    targets: List[ApprovalKey]
    current: int = 0
    status: JobStatus = JobStatus.IDLE
    succeeded: List[ApprovalKey] = field(default_factory=list)
    failed: Optional[ApprovalKey] = None
    error: Optional[TransactionDeclinedOrFailed] = None
    tx_hashes: Dict[ApprovalKey, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.targets)

    @property
    def remaining(self) -> List[ApprovalKey]:
        """Targets that were never attempted."""
        return self.targets[self.current:]

    def _expect(self, *allowed: JobStatus) -> None:
        if self.status not in allowed:
            raise InvalidJobTransition(
                f"RevocationJob is {self.status.value}, expected "
                + " or ".join(s.value for s in allowed)
            )

    def start(self) -> None:
        self._expect(JobStatus.IDLE)
        self.status = JobStatus.RUNNING

    def advance(self) -> ApprovalKey:
        """Move to the next target and return its key."""
        self._expect(JobStatus.RUNNING)
        if self.current >= self.total:
            raise InvalidJobTransition("RevocationJob has no targets left")
        key = self.targets[self.current]
        self.current += 1
        return key

    def record_success(self, key: ApprovalKey, tx_hash: str) -> None:
        self._expect(JobStatus.RUNNING)
        self.succeeded.append(key)
        self.tx_hashes[key] = tx_hash

    def complete(self) -> None:
        self._expect(JobStatus.RUNNING)
        if len(self.succeeded) != self.total:
            raise InvalidJobTransition("Cannot complete a job with unprocessed targets")
        self.status = JobStatus.COMPLETED

    def abort(self, key: ApprovalKey, error: TransactionDeclinedOrFailed) -> None:
        self._expect(JobStatus.RUNNING)
        self.failed = key
        self.error = error
        self.status = JobStatus.ABORTED


@dataclass(frozen=True)
class RevocationOutcome:
    status: JobStatus
    total: int
    succeeded: List[ApprovalKey]
    failed: Optional[ApprovalKey]
    remaining: List[ApprovalKey]
    error: Optional[TransactionDeclinedOrFailed]
    tx_hashes: Dict[ApprovalKey, str]

    @classmethod
    def from_job(cls, job: RevocationJob) -> "RevocationOutcome":
        return cls(
            status=job.status,
            total=job.total,
            succeeded=list(job.succeeded),
            failed=job.failed,
            remaining=list(job.remaining),
            error=job.error,
            tx_hashes=dict(job.tx_hashes),
        )

    @property
    def completed(self) -> bool:
        return self.status is JobStatus.COMPLETED


# ----------------------------------------------------------------------------
# Signing
# ----------------------------------------------------------------------------

def build_revoke_transaction(approval: Approval) -> dict:
    """Unsigned ``approve(spender, 0)`` call on the approval's token."""
    return {
        "to": to_checksum_address(approval.token_address),
        "data": build_call_data(APPROVE_SELECTOR, approval.spender_address, 0),
        "value": 0,
        "chainId": approval.chain_id,
    }


def receipt_succeeded(receipt: dict) -> bool:
    status = receipt.get("status")
    if isinstance(status, str):
        status = int(status, 16)
    return status == 1


class Signer(ABC):
    """A signing capability: an address plus a way to send and confirm transactions."""

    @property
    @abstractmethod
    def address(self) -> str:
        ...

    @abstractmethod
    def send_transaction(self, tx: dict) -> str:
        """Authorise and submit ``tx``, returning its hash. May be declined."""

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str) -> dict:
        """Block until ``tx_hash`` is mined and return its receipt."""


class LocalKeySigner(Signer):
    """Signs with a local private key and submits through a JSON-RPC node.

    ``confirm`` is asked before every signature; returning False declines
    the transaction. Receipt polling gives up after ``receipt_timeout``
    seconds.
    """

    def __init__(
        self,
        rpc: EthereumRPC,
        private_key: str,
        confirm: Optional[Callable[[dict], bool]] = None,
        gas_limit: int = GAS_LIMIT,
        poll_interval: float = 5.0,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.rpc = rpc
        self.account = Account.from_key(private_key)
        self.confirm = confirm
        self.gas_limit = gas_limit
        self.poll_interval = poll_interval
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        return self.account.address

    def _prepare(self, tx: dict) -> dict:
        prepared = dict(tx)
        prepared["from"] = self.address
        prepared["nonce"] = self.rpc.transaction_count(self.address, "pending")
        prepared["gasPrice"] = self.rpc.gas_price()
        try:
            prepared["gas"] = self.rpc.estimate_gas(
                {"from": self.address, "to": tx["to"], "data": tx["data"]}
            )
        except RPCError as exc:
            logger.warning("Gas estimation failed, using %d: %s", self.gas_limit, exc)
            prepared["gas"] = self.gas_limit
        return prepared

    def send_transaction(self, tx: dict) -> str:
        if self.confirm is not None and not self.confirm(tx):
            raise TransactionDeclinedOrFailed("Transaction declined by signer")
        prepared = self._prepare(tx)
        prepared.pop("from")
        signed = self.account.sign_transaction(prepared)
        tx_hash = self.rpc.send_raw_transaction("0x" + bytes(signed.raw_transaction).hex())
        logger.info("Submitted %s (nonce %d)", tx_hash, prepared["nonce"])
        return tx_hash

    def wait_for_receipt(self, tx_hash: str) -> dict:
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = self.rpc.transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if time.monotonic() >= deadline:
                raise TransactionDeclinedOrFailed(
                    f"Timeout waiting for transaction {tx_hash}", tx_hash=tx_hash
                )
            time.sleep(self.poll_interval)


# ----------------------------------------------------------------------------
# Orchestrator
# ----------------------------------------------------------------------------

ProgressCallback = Callable[[RevocationJob], None]


class RevocationOrchestrator:
    """Runs at most one revocation job at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.job: Optional[RevocationJob] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def _revoke_one(self, approval: Approval, signer: Signer) -> str:
        key = approval.key
        tx_hash = None
        try:
            tx_hash = signer.send_transaction(build_revoke_transaction(approval))
            receipt = signer.wait_for_receipt(tx_hash)
        except TransactionDeclinedOrFailed as exc:
            exc.key = key
            exc.tx_hash = exc.tx_hash or tx_hash
            raise
        except Exception as exc:
            raise TransactionDeclinedOrFailed(
                f"Revoking {format_key(key)} failed: {exc}", key=key, tx_hash=tx_hash
            ) from exc
        if not receipt_succeeded(receipt):
            raise TransactionDeclinedOrFailed(
                f"Transaction {tx_hash} reverted", key=key, tx_hash=tx_hash
            )
        return tx_hash

    def revoke(
        self,
        targets: Sequence[Approval],
        signer: Signer,
        registry: ApprovalRegistry,
        owner: Optional[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> RevocationOutcome:
        """Revoke ``targets`` in order, stopping at the first failure.

        Raises NoTargets, NotOwner or RevocationInProgress before anything
        is submitted. Per-target failures do not raise; they end the run and
        are reported in the returned outcome.
        """
        if not targets:
            raise NoTargets("No approvals selected")
        require_owner(signer.address, owner)
        if not self._lock.acquire(blocking=False):
            raise RevocationInProgress("A revocation run is already in progress")

        def notify(job: RevocationJob) -> None:
            if on_progress is not None:
                on_progress(job)

        try:
            job = self.job = RevocationJob([a.key for a in targets])
            job.start()
            notify(job)
            for approval in targets:
                key = job.advance()
                notify(job)
                try:
                    tx_hash = self._revoke_one(approval, signer)
                except TransactionDeclinedOrFailed as exc:
                    logger.error(
                        "Revocation %d/%d stopped: %s", job.current, job.total, exc
                    )
                    job.abort(key, exc)
                    break
                registry.remove_by_key(key)
                job.record_success(key, tx_hash)
                logger.info(
                    "Revoked %s for spender %s (%d/%d, tx %s)",
                    approval.token_symbol or approval.token_address,
                    approval.spender_address, job.current, job.total, tx_hash,
                )
            else:
                job.complete()
            notify(job)
            return RevocationOutcome.from_job(job)
        finally:
            registry.clear_selection()
            self.job = None
            self._lock.release()
