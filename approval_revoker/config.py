"""Runtime settings, read from the environment and overridden by CLI flags."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from approval_revoker.chains import DEFAULT_CHAIN, Chain, get_chain

COVALENT_BASE_URL = "https://api.covalenthq.com"
DEFAULT_LOG_BATCH_SIZE = 10000
DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    api_base_url: str = COVALENT_BASE_URL
    rpc_url: Optional[str] = None
    chain: str = DEFAULT_CHAIN
    private_key: Optional[str] = None
    log_batch_size: int = DEFAULT_LOG_BATCH_SIZE
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            api_key=env.get("COVALENT_API_KEY") or None,
            api_base_url=env.get("COVALENT_BASE_URL", COVALENT_BASE_URL),
            rpc_url=env.get("RPC_URL") or None,
            chain=env.get("CHAIN", DEFAULT_CHAIN),
            private_key=env.get("PRIVATE_KEY") or None,
            log_batch_size=int(env.get("LOG_BATCH_SIZE", DEFAULT_LOG_BATCH_SIZE)),
            http_timeout=float(env.get("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)),
        )

    def override(self, **changes) -> "Settings":
        """Return a copy with every non-None keyword applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def resolve_chain(self) -> Chain:
        return get_chain(self.chain)

    def resolve_rpc_url(self) -> str:
        return self.rpc_url or self.resolve_chain().rpc_url
