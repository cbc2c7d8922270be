"""
rpc.py
======

A small JSON-RPC client for EVM nodes plus the hand-rolled ABI helpers the
collectors and the signer need. It talks to the node over HTTP with
`requests` and does not depend on `web3.py`; the handful of selectors and
topics used here are precomputed constants.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Union

import requests

from approval_revoker.errors import RPCError


# ----------------------------------------------------------------------------
# Constants
# ----------------------------------------------------------------------------

# Precomputed Keccak-256 hashes and function selectors from the standard
# ERC-20 definitions. See
# https://docs.soliditylang.org/en/latest/abi-spec.html#function-selector
APPROVAL_TOPIC = (
    "0x8c5be1e5ebec7d5bd14f714f22dc3bd3f1fc0cf11088a7c6c1559617d7e604bb"
)
ALLOWANCE_SELECTOR = "0xdd62ed3e"  # keccak("allowance(address,address)")[:4]
APPROVE_SELECTOR = "0x095ea7b3"    # keccak("approve(address,uint256)")[:4]
NAME_SELECTOR = "0x06fdde03"       # keccak("name()")[:4]
SYMBOL_SELECTOR = "0x95d89b41"     # keccak("symbol()")[:4]
DECIMALS_SELECTOR = "0x313ce567"   # keccak("decimals()")[:4]

MAX_UINT256 = 2 ** 256 - 1

logger = logging.getLogger(__name__)


class EthereumRPC:
    """A minimal JSON-RPC client for Ethereum nodes.

    Only the methods the approval scanner and the revocation signer use are
    wrapped. See https://ethereum.org/en/developers/docs/apis/json-rpc/ for
    the full method list.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self._id_counter = 0

    def _rpc(self, method: str, params: list) -> Any:
        self._id_counter += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._id_counter,
            "method": method,
            "params": params,
        }
        logger.debug("rpc %s #%d", method, self._id_counter)
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RPCError(f"RPC connection error: {exc}") from exc
        if response.status_code != 200:
            raise RPCError(f"RPC HTTP {response.status_code}: {response.text[:200]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise RPCError(f"RPC returned non-JSON body: {response.text[:200]}") from exc
        if data.get("error"):
            error = data["error"]
            raise RPCError(
                f"RPC error {error.get('code')}: {error.get('message')}",
                code=error.get("code"),
            )
        return data.get("result")

    def chain_id(self) -> int:
        return int(self._rpc("eth_chainId", []), 16)

    def block_number(self) -> int:
        """Return the latest block number."""
        return int(self._rpc("eth_blockNumber", []), 16)

    def block_timestamp(self, block: Union[int, str]) -> Optional[int]:
        """Return the unix timestamp of a block, or None if the node has no such block."""
        tag = hex(block) if isinstance(block, int) else block
        result = self._rpc("eth_getBlockByNumber", [tag, False])
        if not result:
            return None
        return int(result["timestamp"], 16)

    def get_logs(self, log_filter: dict) -> List[dict]:
        """Return event logs matching the provided filter."""
        return self._rpc("eth_getLogs", [log_filter]) or []

    def eth_call(self, to: str, data: str) -> str:
        """Perform a call without creating a transaction and return raw hex data."""
        return self._rpc("eth_call", [{"to": to, "data": data}, "latest"])

    def transaction_count(self, address: str, block: str = "pending") -> int:
        return int(self._rpc("eth_getTransactionCount", [address, block]), 16)

    def gas_price(self) -> int:
        return int(self._rpc("eth_gasPrice", []), 16)

    def estimate_gas(self, tx: dict) -> int:
        return int(self._rpc("eth_estimateGas", [tx]), 16)

    def send_raw_transaction(self, raw_tx: str) -> str:
        return self._rpc("eth_sendRawTransaction", [raw_tx])

    def transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Return the receipt, or None while the transaction is still pending."""
        return self._rpc("eth_getTransactionReceipt", [tx_hash])


# ----------------------------------------------------------------------------
# ABI helpers
# ----------------------------------------------------------------------------

def clean_address(addr: str) -> str:
    """Normalise an Ethereum address to lower-case without the 0x prefix."""
    if addr.startswith("0x") or addr.startswith("0X"):
        addr = addr[2:]
    return addr.lower()


def pad_hex(value: str, length: int = 64) -> str:
    """Left pad a hex string (without 0x) with zeros to the specified length."""
    return value.rjust(length, "0")


def address_topic(addr: str) -> str:
    """Encode an address as a 32-byte indexed event topic."""
    return "0x" + pad_hex(clean_address(addr))


def topic_to_address(topic: str) -> str:
    """Take the low 20 bytes of a 32-byte topic as a lower-case address."""
    if topic.startswith("0x"):
        topic = topic[2:]
    return "0x" + topic[-40:].lower()


def build_call_data(function_selector: str, *args: Union[str, int]) -> str:
    """Construct call data for a function selector and static arguments.

    String arguments are addresses (with or without 0x), integer arguments
    are uint256 values. Each is left padded to 32 bytes as the ABI requires.
    The returned call data includes the 0x prefix.
    """
    encoded = function_selector[2:]
    for arg in args:
        if isinstance(arg, int):
            encoded += pad_hex(format(arg, "x"))
        else:
            encoded += pad_hex(clean_address(arg))
    return "0x" + encoded


def parse_int256(data: str) -> int:
    """Decode the first 32-byte word of an eth_call result into an integer.

    Raises ValueError on an empty result, which is what a call to an
    address without code (or without the function) returns.
    """
    if data.startswith("0x"):
        data = data[2:]
    if len(data) < 64:
        raise ValueError(f"short ABI word: 0x{data}")
    return int(data[:64], 16)


def decode_abi_string(data: str) -> str:
    """Decode an ABI-encoded ``string`` return value.

    Some older tokens (MKR, SAI) return ``bytes32`` instead of a dynamic
    string; a single 32-byte word is decoded as right-padded bytes.
    """
    if data.startswith("0x"):
        data = data[2:]
    if len(data) == 64:
        raw = bytes.fromhex(data).rstrip(b"\x00")
        return raw.decode("utf-8", errors="ignore")
    if len(data) < 128:
        raise ValueError(f"short ABI string: 0x{data}")
    offset = int(data[:64], 16) * 2
    length = int(data[offset:offset + 64], 16)
    hex_string = data[offset + 64:offset + 64 + length * 2]
    return bytes.fromhex(hex_string).decode("utf-8", errors="ignore").strip("\x00")
