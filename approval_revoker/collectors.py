"""
collectors.py
=============

Approval collectors. Both strategies implement the same
``collect(address, chain)`` contract and return raw approval facts for one
wallet on one chain; callers depend only on :class:`ApprovalCollector`.

* :class:`IndexedApiCollector` asks the Covalent approvals endpoint, which
  already knows the current allowance, spender labels and a risk hint.
* :class:`OnChainLogCollector` rebuilds the current allowances from the
  wallet's ``Approval`` event history using a plain JSON-RPC node. The most
  recent event for a (token, spender) pair is the effective one.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

import requests
from eth_utils import is_address, to_checksum_address

from approval_revoker.chains import Chain
from approval_revoker.errors import (
    InvalidAddress,
    InvalidResponseShape,
    MissingCredential,
    ProviderUnavailable,
    RPCError,
    UpstreamUnavailable,
)
from approval_revoker.models import RawApprovalFact, parse_address
from approval_revoker.normalizer import format_units, is_unlimited_allowance
from approval_revoker.rpc import (
    ALLOWANCE_SELECTOR,
    APPROVAL_TOPIC,
    DECIMALS_SELECTOR,
    NAME_SELECTOR,
    SYMBOL_SELECTOR,
    EthereumRPC,
    address_topic,
    build_call_data,
    decode_abi_string,
    parse_int256,
    topic_to_address,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TOKEN_NAME = "Unknown Token"
DEFAULT_TOKEN_SYMBOL = ""
DEFAULT_DECIMALS = 18

# Labels for widely used spenders (lower-case addresses), shown when the log
# source has no label of its own.
KNOWN_SPENDERS: Dict[str, str] = {
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d": "Uniswap V2 Router",
    "0xe592427a0aece92de3edee1f18e0157c05861564": "Uniswap V3 Router",
    "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45": "Uniswap V3 SwapRouter02",
    "0x000000000022d473030f116ddee9f6b43ac78ba3": "Uniswap Permit2",
    "0xd9e1ce17f2641f24ae83637ab66a2cca9c378b9f": "SushiSwap Router",
    "0x1111111254eeb25477b68fb85ed929f73a960582": "1inch Router",
    "0xdef1c0ded9bec7f1a1670819833240f027b25eff": "0x Exchange Proxy",
    "0x7d2768de32b0b80b7a3454c06bdac139dff81b6c": "Aave LendingPoolV2",
    "0x00000000006c3852cbef3e08e8df289169ede581": "OpenSea Seaport",
}


class ApprovalCollector(ABC):
    """Produces raw approval facts for one address on one chain."""

    @abstractmethod
    def collect(self, address: str, chain: Chain) -> List[RawApprovalFact]:
        """Return every live approval fact granted by ``address``.

        Raises a :class:`~approval_revoker.errors.CollectorError` subclass
        when the source cannot be used at all.
        """


def _require_checksummed(address: str) -> str:
    checksummed = parse_address(address)
    if checksummed != address:
        raise InvalidAddress(address)
    return checksummed


# ----------------------------------------------------------------------------
# Indexed API
# ----------------------------------------------------------------------------

def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _item_address(item: dict, field_name: str) -> str:
    value = item.get(field_name)
    if not isinstance(value, str) or not is_address(value):
        raise InvalidResponseShape(f"Approvals item has invalid {field_name}: {value!r}")
    return to_checksum_address(value)


def _is_amount(value: str) -> bool:
    try:
        amount = Decimal(value.replace(",", ""))
    except InvalidOperation:
        return False
    return amount.is_finite() and amount >= 0


def _item_decimals(item: dict) -> int:
    value = item.get("contract_decimals")
    if value is None:
        return DEFAULT_DECIMALS
    try:
        decimals = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidResponseShape(f"Approvals item has invalid contract_decimals: {value!r}") from exc
    if decimals < 0:
        raise InvalidResponseShape(f"Approvals item has negative contract_decimals: {value!r}")
    return decimals


class IndexedApiCollector(ApprovalCollector):
    """Collects approvals from the Covalent ``approvals`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.covalenthq.com",
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _url(self, address: str, chain: Chain) -> str:
        return f"{self.base_url}/v1/{chain.api_name}/approvals/{address}/"

    def fetch(self, address: str, chain: Chain) -> List[dict]:
        """Return the response's token items, validating the envelope."""
        if not self.api_key:
            raise MissingCredential("Missing API key for the approvals service")
        address = _require_checksummed(address)
        url = self._url(address, chain)
        logger.info("Fetching approvals for %s on %s", address, chain.name)
        try:
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamUnavailable(f"Approvals service unreachable: {exc}") from exc
        if not response.ok:
            raise UpstreamUnavailable(
                f"API Error: {response.status_code}", status=response.status_code
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponseShape("Approvals response is not JSON") from exc
        if not isinstance(payload, dict):
            raise InvalidResponseShape("Approvals response is not a JSON object")
        if payload.get("error"):
            raise UpstreamUnavailable(
                payload.get("error_message") or "API error",
                status=payload.get("error_code"),
            )
        data = payload.get("data")
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise InvalidResponseShape("Approvals response has no data.items list")
        return items

    def collect(self, address: str, chain: Chain) -> List[RawApprovalFact]:
        facts: List[RawApprovalFact] = []
        for token in self.fetch(address, chain):
            if not isinstance(token, dict):
                raise InvalidResponseShape(f"Approvals item is not an object: {token!r}")
            token_address = _item_address(token, "token_address")
            symbol = str(token.get("ticker_symbol") or "")
            decimals = _item_decimals(token)
            spenders = token.get("spenders") or []
            if not isinstance(spenders, list):
                raise InvalidResponseShape(f"Approvals item for {token_address} has no spenders list")
            for spender in spenders:
                if not isinstance(spender, dict):
                    raise InvalidResponseShape(f"Spender entry is not an object: {spender!r}")
                allowance = str(spender.get("allowance") or "0").strip()
                if not is_unlimited_allowance(allowance) and not _is_amount(allowance):
                    raise InvalidResponseShape(f"Unparseable allowance: {allowance!r}")
                risk_hint = spender.get("risk_factor")
                facts.append(
                    RawApprovalFact(
                        chain_id=chain.chain_id,
                        token_address=token_address,
                        token_name=token.get("token_address_label") or symbol or DEFAULT_TOKEN_NAME,
                        token_symbol=symbol,
                        token_logo_url=token.get("logo_url"),
                        decimals=decimals,
                        spender_address=_item_address(spender, "spender_address"),
                        spender_label=spender.get("spender_address_label"),
                        allowance=allowance,
                        allowance_scaled=True,
                        risk_hint=risk_hint if isinstance(risk_hint, str) else None,
                        timestamp=_parse_timestamp(spender.get("block_signed_at")),
                        value_at_risk_usd=_parse_float(spender.get("value_at_risk_quote")),
                        source="api",
                    )
                )
        logger.info("Approvals service returned %d token/spender pairs", len(facts))
        return facts


# ----------------------------------------------------------------------------
# On-chain logs
# ----------------------------------------------------------------------------

@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Outcome of a best-effort read: the value, or the default it fell back to."""

    value: T
    defaulted: bool = False


def best_effort(read: Callable[[], T], default: T, what: str) -> Lookup[T]:
    try:
        return Lookup(read())
    except (RPCError, ValueError, KeyError, TypeError) as exc:
        logger.debug("%s unavailable, using %r: %s", what, default, exc)
        return Lookup(default, defaulted=True)


@dataclass(frozen=True)
class TokenMetadata:
    name: Lookup[str]
    symbol: Lookup[str]
    decimals: Lookup[int]


def get_token_metadata(rpc: EthereumRPC, token: str) -> TokenMetadata:
    """Read name, symbol and decimals, each independently defaulted."""

    def read_string(selector: str) -> Callable[[], str]:
        def read() -> str:
            value = decode_abi_string(rpc.eth_call(token, selector))
            if not value:
                raise ValueError("empty string")
            return value
        return read

    name = best_effort(read_string(NAME_SELECTOR), DEFAULT_TOKEN_NAME, f"name() of {token}")
    symbol = best_effort(read_string(SYMBOL_SELECTOR), DEFAULT_TOKEN_SYMBOL, f"symbol() of {token}")
    decimals = best_effort(
        lambda: parse_int256(rpc.eth_call(token, DECIMALS_SELECTOR)),
        DEFAULT_DECIMALS,
        f"decimals() of {token}",
    )
    return TokenMetadata(name=name, symbol=symbol, decimals=decimals)


def _is_range_limit_error(exc: RPCError) -> bool:
    message = str(exc).lower()
    return "query returned more than" in message or "limit" in message or "range" in message


def get_approval_logs(
    rpc: EthereumRPC,
    owner: str,
    from_block: int = 0,
    to_block: Optional[int] = None,
    batch_size: int = 10000,
) -> Iterable[dict]:
    """Yield Approval event logs for the owner between block ranges.

    The range is split into batches to stay under provider limits; a batch
    the provider rejects as too large is retried in halves. Any other RPC
    failure propagates.
    """
    latest = to_block if to_block is not None else rpc.block_number()
    owner_topic = address_topic(owner)
    start = from_block
    while start <= latest:
        end = min(start + batch_size - 1, latest)
        log_filter = {
            "fromBlock": hex(start),
            "toBlock": hex(end),
            "topics": [APPROVAL_TOPIC, owner_topic],
        }
        try:
            logs = rpc.get_logs(log_filter)
        except RPCError as exc:
            if _is_range_limit_error(exc) and batch_size > 100 and end > start:
                logger.warning(
                    "Too many logs in batch %d-%d; reducing batch size to %d",
                    start, end, batch_size // 2,
                )
                yield from get_approval_logs(rpc, owner, start, end, batch_size // 2)
                start = end + 1
                continue
            raise
        yield from logs
        start = end + 1


def decode_approval_log(log: dict) -> Tuple[str, str, int, Optional[int]]:
    """Decode an Approval log into (token, spender, amount, block number).

    The spender is the third topic; the amount is the ``data`` word.
    """
    token = log.get("address", "0x0").lower()
    topics = log.get("topics", [])
    if len(topics) < 3:
        raise ValueError("Approval log without an indexed spender")
    spender = topic_to_address(topics[2])
    amount_hex = log.get("data") or "0x0"
    amount = int(amount_hex, 16) if amount_hex not in ("0x", "") else 0
    block = log.get("blockNumber")
    return (token, spender, amount, int(block, 16) if block else None)


def fold_approval_logs(
    logs: Iterable[dict],
) -> Dict[Tuple[str, str], Tuple[int, Optional[int]]]:
    """Fold logs into the latest (amount, block) per (token, spender).

    Logs arrive in chain order, so a later entry overwrites an earlier one.
    """
    latest: Dict[Tuple[str, str], Tuple[int, Optional[int]]] = {}
    for log in logs:
        try:
            token, spender, amount, block = decode_approval_log(log)
        except ValueError as exc:
            logger.debug("Skipping undecodable log %r: %s", log.get("transactionHash"), exc)
            continue
        latest[(token, spender)] = (amount, block)
    return latest


def fetch_allowance(rpc: EthereumRPC, token: str, owner: str, spender: str) -> Lookup[Optional[int]]:
    """Read the current allowance for a token/owner/spender, None if unavailable."""
    call_data = build_call_data(ALLOWANCE_SELECTOR, owner, spender)
    return best_effort(
        lambda: parse_int256(rpc.eth_call(token, call_data)),
        None,
        f"allowance() of {token} for {spender}",
    )


class OnChainLogCollector(ApprovalCollector):
    """Rebuilds current allowances from the owner's Approval event history.

    ``verify_current`` re-reads ``allowance(owner, spender)`` for every
    surviving pair; tokens that spend allowance in ``transferFrom`` without
    emitting a fresh Approval event otherwise show a stale amount.
    ``resolve_timestamps`` looks up the block time of the latest event so the
    approval gets an age.
    """

    def __init__(
        self,
        rpc: EthereumRPC,
        from_block: int = 0,
        to_block: Optional[int] = None,
        batch_size: int = 10000,
        verify_current: bool = False,
        resolve_timestamps: bool = True,
    ) -> None:
        self.rpc = rpc
        self.from_block = from_block
        self.to_block = to_block
        self.batch_size = batch_size
        self.verify_current = verify_current
        self.resolve_timestamps = resolve_timestamps

    def _block_time(self, block: Optional[int], cache: Dict[int, Lookup]) -> Optional[datetime]:
        if block is None or not self.resolve_timestamps:
            return None
        if block not in cache:
            cache[block] = best_effort(
                lambda: self.rpc.block_timestamp(block), None, f"timestamp of block {block}"
            )
        seconds = cache[block].value
        if seconds is None:
            return None
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    def collect(self, address: str, chain: Chain) -> List[RawApprovalFact]:
        owner = _require_checksummed(address)
        logger.info("Scanning approval logs to identify token/spender pairs...")
        try:
            pairs = fold_approval_logs(
                get_approval_logs(
                    self.rpc, owner, self.from_block, self.to_block, self.batch_size
                )
            )
        except RPCError as exc:
            raise ProviderUnavailable(f"Cannot read approval logs: {exc}") from exc
        logger.info("Found %d unique token/spender pairs", len(pairs))

        metadata: Dict[str, TokenMetadata] = {}
        block_times: Dict[int, Lookup] = {}
        facts: List[RawApprovalFact] = []
        for (token, spender), (amount, block) in pairs.items():
            if self.verify_current:
                current = fetch_allowance(self.rpc, token, owner, spender)
                if current.defaulted:
                    logger.warning(
                        "Failed to fetch allowance for token %s, spender %s; keeping logged value",
                        token, spender,
                    )
                else:
                    amount = current.value
            if token not in metadata:
                metadata[token] = get_token_metadata(self.rpc, token)
            meta = metadata[token]
            allowance = str(amount)
            if not is_unlimited_allowance(allowance) and format_units(amount, meta.decimals.value) == "0":
                continue
            facts.append(
                RawApprovalFact(
                    chain_id=chain.chain_id,
                    token_address=to_checksum_address(token),
                    token_name=meta.name.value,
                    token_symbol=meta.symbol.value,
                    decimals=meta.decimals.value,
                    spender_address=to_checksum_address(spender),
                    spender_label=KNOWN_SPENDERS.get(spender),
                    allowance=allowance,
                    timestamp=self._block_time(block, block_times),
                    source="logs",
                )
            )
        logger.info("%d live approvals after dropping zero allowances", len(facts))
        return facts
