"""
normalizer.py
=============

Turns :class:`RawApprovalFact` records from either collector into canonical
:class:`Approval` records: risk level from the source's hint, the unlimited
flag, a human readable allowance and the approval's age.

Risk classification only has a signal on the indexing-API path. The API
attaches a free-text ``risk_factor`` such as ``"CONSIDER REVOKING"`` or
``"LOW RISK"``; log-derived facts carry none and are therefore always LOW.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import Iterable, List, Optional

from approval_revoker.models import Approval, RawApprovalFact, RiskLevel
from approval_revoker.rpc import MAX_UINT256

UNLIMITED_SENTINEL = "UNLIMITED"
SECONDS_PER_DAY = 24 * 60 * 60
# uint256 has 78 decimal digits; the default context (28) would round.
DECIMAL_PRECISION = 100


def classify_risk(risk_hint: Optional[str]) -> RiskLevel:
    """Map the indexing service's risk factor text onto a RiskLevel."""
    if not risk_hint:
        return RiskLevel.LOW
    hint = risk_hint.upper()
    if "REVOKING" in hint:
        return RiskLevel.HIGH
    if "MEDIUM" in hint:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_unlimited_allowance(allowance: str) -> bool:
    value = allowance.strip()
    return value.upper() == UNLIMITED_SENTINEL or value == str(MAX_UINT256)


def format_units(raw: int, decimals: int) -> str:
    """Render a base-unit integer in token units without float rounding."""
    if decimals <= 0:
        return str(raw)
    with localcontext() as ctx:
        ctx.prec = DECIMAL_PRECISION
        quantity = Decimal(raw).scaleb(-decimals)
    text = format(quantity, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a token-unit decimal string back into base units."""
    try:
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            return int(Decimal(amount.strip().replace(",", "")).scaleb(decimals))
    except InvalidOperation as exc:
        raise ValueError(f"Unparseable allowance: {amount!r}") from exc


def age_in_days(timestamp: Optional[datetime], now: Optional[datetime] = None) -> int:
    if timestamp is None:
        return 0
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    elapsed = (now - timestamp).total_seconds()
    return max(0, int(elapsed // SECONDS_PER_DAY))


def normalize(fact: RawApprovalFact, now: Optional[datetime] = None) -> Approval:
    """Build the canonical Approval for one raw fact."""
    decimals = fact.decimals if fact.decimals is not None and fact.decimals >= 0 else 18
    unlimited = is_unlimited_allowance(fact.allowance)

    if unlimited:
        allowance_raw = str(MAX_UINT256)
        formatted = "Unlimited"
    elif fact.allowance_scaled:
        allowance_raw = str(to_base_units(fact.allowance, decimals))
        formatted = format_units(int(allowance_raw), decimals)
    else:
        raw = int(fact.allowance.strip())
        allowance_raw = str(raw)
        formatted = format_units(raw, decimals)

    value_at_risk = fact.value_at_risk_usd
    if value_at_risk is None or value_at_risk < 0:
        value_at_risk = 0.0

    return Approval(
        chain_id=fact.chain_id,
        token_address=fact.token_address,
        token_name=fact.token_name,
        token_symbol=fact.token_symbol,
        token_logo_url=fact.token_logo_url,
        spender_address=fact.spender_address,
        spender_label=fact.spender_label,
        allowance_raw=allowance_raw,
        decimals=decimals,
        is_unlimited=unlimited,
        formatted_allowance=formatted,
        age_in_days=age_in_days(fact.timestamp, now),
        risk_level=classify_risk(fact.risk_hint),
        value_at_risk_usd=float(value_at_risk),
    )


def is_live(approval: Approval) -> bool:
    """A zero, non-unlimited allowance is not a live approval."""
    return approval.is_unlimited or int(approval.allowance_raw) > 0


def normalize_all(
    facts: Iterable[RawApprovalFact], now: Optional[datetime] = None
) -> List[Approval]:
    """Normalise a batch of facts in order, dropping dead allowances."""
    now = now or datetime.now(timezone.utc)
    approvals = [normalize(fact, now) for fact in facts]
    return [a for a in approvals if is_live(a)]
