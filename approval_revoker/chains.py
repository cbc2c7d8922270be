"""Supported EVM networks and their indexing-API / RPC endpoints."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Union

from approval_revoker.errors import UnknownChain


@dataclass(frozen=True)
class Chain:
    chain_id: int
    name: str
    api_name: str  # chain name in the Covalent URL scheme
    rpc_url: str
    tx_url: str

    def explorer_link(self, tx_hash: str) -> str:
        return f"{self.tx_url}{tx_hash}"


SUPPORTED_CHAINS: Dict[int, Chain] = {
    1: Chain(1, "Ethereum", "eth-mainnet",
             "https://cloudflare-eth.com", "https://etherscan.io/tx/"),
    10: Chain(10, "Optimism", "optimism-mainnet",
              "https://mainnet.optimism.io", "https://optimistic.etherscan.io/tx/"),
    56: Chain(56, "BNB Smart Chain", "bsc-mainnet",
              "https://bsc-dataseed.binance.org/", "https://bscscan.com/tx/"),
    137: Chain(137, "Polygon", "matic-mainnet",
               "https://polygon-rpc.com/", "https://polygonscan.com/tx/"),
    8453: Chain(8453, "Base", "base-mainnet",
                "https://mainnet.base.org", "https://basescan.org/tx/"),
    42161: Chain(42161, "Arbitrum", "arbitrum-mainnet",
                 "https://arb1.arbitrum.io/rpc", "https://arbiscan.io/tx/"),
}

DEFAULT_CHAIN = "eth-mainnet"


def get_chain(ref: Union[int, str]) -> Chain:
    """Look a chain up by numeric id, API name (``eth-mainnet``) or display name."""
    if isinstance(ref, int) or (isinstance(ref, str) and ref.strip().isdigit()):
        chain = SUPPORTED_CHAINS.get(int(ref))
        if chain is None:
            raise UnknownChain(f"Unsupported chain id: {ref}")
        return chain
    wanted = ref.strip().lower()
    for chain in SUPPORTED_CHAINS.values():
        if wanted in (chain.api_name, chain.name.lower()):
            return chain
    raise UnknownChain(f"Unsupported chain: {ref!r}")
