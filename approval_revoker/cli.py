#!/usr/bin/env python3
"""
cli.py
======

Command line front end for the approval revoker.

``scan`` lists the ERC-20 approvals a wallet has granted, ordered by risk,
and can export them to JSON or CSV. ``revoke`` scans the wallet of the
configured private key and revokes the selected approvals one transaction at
a time, asking before each signature unless ``--yes`` is given.

Configuration comes from the environment (COVALENT_API_KEY, RPC_URL, CHAIN,
PRIVATE_KEY, ...) and can be overridden with flags.
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from typing import Callable, List, Optional

from approval_revoker.collectors import (
    ApprovalCollector,
    IndexedApiCollector,
    OnChainLogCollector,
)
from approval_revoker.config import Settings
from approval_revoker.errors import RevokerError
from approval_revoker.models import Approval, RiskLevel, approval_key, format_key
from approval_revoker.registry import ALL
from approval_revoker.revocation import (
    JobStatus,
    LocalKeySigner,
    RevocationJob,
    RevocationOutcome,
)
from approval_revoker.rpc import EthereumRPC
from approval_revoker.session import Session

logger = logging.getLogger("approval_revoker")

EXPORT_FIELDS = [
    "chain_id",
    "token",
    "token_name",
    "token_symbol",
    "spender",
    "spender_label",
    "allowance",
    "allowance_readable",
    "unlimited",
    "age_days",
    "value_at_risk_usd",
    "risk_level",
]


def build_collector(source: str, settings: Settings, verify: bool = False) -> ApprovalCollector:
    if source == "api":
        return IndexedApiCollector(
            settings.api_key, settings.api_base_url, timeout=settings.http_timeout
        )
    rpc = EthereumRPC(settings.resolve_rpc_url(), timeout=settings.http_timeout)
    return OnChainLogCollector(
        rpc, batch_size=settings.log_batch_size, verify_current=verify
    )


# ----------------------------------------------------------------------------
# Output
# ----------------------------------------------------------------------------

def print_table(approvals: List[Approval], out=None) -> None:
    """Print a simple table of approvals."""
    out = out or sys.stdout
    if not approvals:
        print("No token approvals found. This wallet has no active ERC-20 approvals.", file=out)
        return
    headers = ["Token", "Spender", "Allowance", "Age", "At risk", "Risk"]
    rows: List[List[str]] = []
    for a in approvals:
        rows.append([
            f"{a.token_name} ({a.token_symbol})\n{a.token_address}",
            f"{a.spender_label or 'Unknown'}\n{a.spender_address}",
            a.formatted_allowance,
            f"{a.age_in_days}d",
            f"${a.value_at_risk_usd:.2f}",
            a.risk_level.value,
        ])
    col_widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            for line in cell.split("\n"):
                col_widths[idx] = max(col_widths[idx], len(line))
    sep_line = "+" + "+".join("-" * (w + 2) for w in col_widths) + "+"
    print(sep_line, file=out)
    print(
        "|" + "|".join(f" {headers[i].ljust(col_widths[i])} " for i in range(len(headers))) + "|",
        file=out,
    )
    print(sep_line, file=out)
    for row in rows:
        max_lines = max(cell.count("\n") + 1 for cell in row)
        lines_split = [
            cell.split("\n") + [""] * (max_lines - (cell.count("\n") + 1)) for cell in row
        ]
        for i in range(max_lines):
            print(
                "|"
                + "|".join(
                    f" {lines_split[col][i].ljust(col_widths[col])} "
                    for col in range(len(headers))
                )
                + "|",
                file=out,
            )
        print(sep_line, file=out)
    high = sum(1 for a in approvals if a.risk_level is RiskLevel.HIGH)
    medium = sum(1 for a in approvals if a.risk_level is RiskLevel.MEDIUM)
    low = sum(1 for a in approvals if a.risk_level is RiskLevel.LOW)
    print(f"Summary: {high} high, {medium} medium, {low} low risk approvals.", file=out)


def export_approvals(approvals: List[Approval], outfile: str) -> None:
    """Export approvals to JSON or CSV based on file extension."""
    lower = outfile.lower()
    if lower.endswith(".json"):
        fmt = "json"
    elif lower.endswith(".csv"):
        fmt = "csv"
    else:
        raise ValueError("Unknown export format; use .json or .csv extension.")
    records = [a.as_dict() for a in approvals]
    if fmt == "json":
        with open(outfile, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)
    else:
        with open(outfile, "w", newline="", encoding="utf-8") as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=EXPORT_FIELDS)
            writer.writeheader()
            writer.writerows(records)
    logger.info("Exported %d records to %s", len(records), outfile)


def print_outcome(outcome: RevocationOutcome, session: Session, out=None) -> None:
    out = out or sys.stdout
    chain = session.context.active_chain
    succeeded = len(outcome.succeeded)
    if outcome.status is JobStatus.COMPLETED:
        print(f"Batch revoke completed: {succeeded}/{outcome.total} revoked.", file=out)
    else:
        print(
            f"Batch revoke stopped: {succeeded}/{outcome.total} revoked, "
            f"{len(outcome.remaining)} not attempted.",
            file=out,
        )
        if outcome.error is not None:
            print(f"  Failed: {outcome.error}", file=out)
    for key in outcome.succeeded:
        print(f"  {format_key(key)} -> {chain.explorer_link(outcome.tx_hashes[key])}", file=out)


# ----------------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------------

def _prompt_confirm(tx: dict) -> bool:
    answer = input(f"Sign approve(spender, 0) on {tx['to']}? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _progress_printer(session: Session) -> Callable[[RevocationJob], None]:
    def report(job: RevocationJob) -> None:
        if job.status is JobStatus.RUNNING and job.current:
            approval = session.registry.get(job.targets[job.current - 1])
            label = approval.token_symbol if approval else ""
            print(f"Revoking {job.current}/{job.total} {label}")
    return report


def cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    session = Session(settings.resolve_chain(), build_collector(args.source, settings, args.verify))
    session.scan(args.address)
    approvals = session.registry.filter_by_risk(args.risk)
    print_table(approvals)
    if args.export:
        export_approvals(approvals, args.export)
    return 0


def _parse_selection(value: str, chain_id: int):
    token, sep, spender = value.partition(":")
    if not sep:
        raise ValueError(f"Expected TOKEN:SPENDER, got {value!r}")
    return approval_key(chain_id, token, spender)


def cmd_revoke(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.private_key:
        print("PRIVATE_KEY is not configured.", file=sys.stderr)
        return 1
    chain = settings.resolve_chain()
    rpc = EthereumRPC(settings.resolve_rpc_url(), timeout=settings.http_timeout)
    signer = LocalKeySigner(
        rpc, settings.private_key, confirm=None if args.yes else _prompt_confirm
    )
    session = Session(chain, build_collector(args.source, settings, args.verify))
    if args.address:
        session.connect(signer, scan=False)
        session.scan(args.address)
    else:
        session.connect(signer)

    if args.select:
        for value in args.select:
            session.registry.set_selection(_parse_selection(value, chain.chain_id), True)
    else:
        session.registry.select_where(args.risk)

    print_table(session.registry.selected_targets())
    outcome = session.revoke_selected(on_progress=_progress_printer(session))
    print_outcome(outcome, session)
    return 0 if outcome.completed else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="approval-revoker",
        description="Find ERC-20 approvals granted by a wallet and revoke the risky ones.",
    )
    parser.add_argument("--chain", default=None, help="Chain id or name (default: $CHAIN or eth-mainnet).")
    parser.add_argument("--rpc", default=None, help="JSON-RPC endpoint (default: $RPC_URL or the chain's public RPC).")
    parser.add_argument("--api-key", default=None, help="Covalent API key (default: $COVALENT_API_KEY).")
    parser.add_argument(
        "--source",
        choices=["api", "logs"],
        default="api",
        help="Where approvals come from: the indexing API or the node's event logs.",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        help="With --source logs, re-read each allowance on-chain.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="List approvals granted by an address.")
    scan.add_argument("--address", required=True, help="Wallet address to scan (0x...).")
    scan.add_argument("--risk", default=ALL, choices=[ALL, "low", "medium", "high"])
    scan.add_argument("--export", default=None, help="Export results to a file (.json or .csv).")

    revoke = sub.add_parser("revoke", help="Revoke approvals of the PRIVATE_KEY wallet.")
    revoke.add_argument("--address", default=None, help="Wallet to scan (default: the signer's).")
    revoke.add_argument("--risk", default="high", choices=[ALL, "low", "medium", "high"],
                        help="Select every approval at this risk level (default: high).")
    revoke.add_argument("--select", nargs="+", metavar="TOKEN:SPENDER",
                        help="Select specific approvals instead of a risk level.")
    revoke.add_argument("--yes", action="store_true", help="Do not ask before each signature.")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    settings = Settings.from_env().override(
        chain=args.chain, rpc_url=args.rpc, api_key=args.api_key
    )
    commands = {"scan": cmd_scan, "revoke": cmd_revoke}
    try:
        return commands[args.command](args, settings)
    except (RevokerError, ValueError, KeyError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
