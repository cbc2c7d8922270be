"""Core records shared by the collectors, the registry and the revoker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from eth_utils import is_address, is_checksum_address, to_checksum_address

from approval_revoker.errors import InvalidAddress

# (chain_id, token address, spender address), addresses lower-case.
ApprovalKey = Tuple[int, str, str]


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]

    @classmethod
    def parse(cls, value: Union[str, "RiskLevel"]) -> "RiskLevel":
        if isinstance(value, cls):
            return value
        for level in cls:
            if level.value.lower() == str(value).strip().lower():
                return level
        raise ValueError(f"Unknown risk level: {value!r}")


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


def parse_address(value: Optional[str]) -> str:
    """Validate free-text input and return the checksummed address.

    All-lower or all-upper hex is accepted as is; mixed case must carry a
    valid EIP-55 checksum.
    """
    candidate = (value or "").strip()
    if not is_address(candidate):
        raise InvalidAddress(candidate)
    body = candidate[2:] if candidate[:2] in ("0x", "0X") else candidate
    if body not in (body.lower(), body.upper()) and not is_checksum_address(candidate):
        raise InvalidAddress(candidate)
    return to_checksum_address(candidate)


def approval_key(chain_id: int, token_address: str, spender_address: str) -> ApprovalKey:
    return (int(chain_id), token_address.lower(), spender_address.lower())


def format_key(key: ApprovalKey) -> str:
    chain_id, token, spender = key
    return f"{chain_id}:{token}:{spender}"


@dataclass
class RawApprovalFact:
    """One (token, spender) allowance as a collector saw it, before normalisation."""

    chain_id: int
    token_address: str
    spender_address: str
    allowance: str
    token_name: str = "Unknown Token"
    token_symbol: str = ""
    token_logo_url: Optional[str] = None
    decimals: int = 18
    spender_label: Optional[str] = None
    # True when `allowance` is already in token units (indexing API), False
    # when it is the raw uint256 (log path).
    allowance_scaled: bool = False
    risk_hint: Optional[str] = None
    timestamp: Optional[datetime] = None
    value_at_risk_usd: Optional[float] = None
    source: str = "logs"


@dataclass
class Approval:
    chain_id: int
    token_address: str
    token_name: str
    token_symbol: str
    spender_address: str
    allowance_raw: str
    decimals: int
    is_unlimited: bool
    formatted_allowance: str
    risk_level: RiskLevel
    token_logo_url: Optional[str] = None
    spender_label: Optional[str] = None
    age_in_days: int = 0
    value_at_risk_usd: float = 0.0

    @property
    def key(self) -> ApprovalKey:
        return approval_key(self.chain_id, self.token_address, self.spender_address)

    def as_dict(self) -> Dict:
        """Return a dict for export/serialization."""
        return {
            "chain_id": self.chain_id,
            "token": self.token_address,
            "token_name": self.token_name,
            "token_symbol": self.token_symbol,
            "spender": self.spender_address,
            "spender_label": self.spender_label or "Unknown",
            "allowance": self.allowance_raw,
            "allowance_readable": self.formatted_allowance,
            "unlimited": self.is_unlimited,
            "age_days": self.age_in_days,
            "value_at_risk_usd": round(self.value_at_risk_usd, 2),
            "risk_level": self.risk_level.value,
        }
