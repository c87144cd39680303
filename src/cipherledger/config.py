"""Runtime configuration.

Settings come from the process environment, optionally seeded from a
``.env`` file. Keys fall back to the names used by the anchoring tools
(``SEPOLIA_RPC_URL``, ``PRIVATE_KEY``) so one ``.env`` serves both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

SEPOLIA_CHAIN_ID = 11155111


def _get(env: Mapping[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        value = env.get(key)
        if value:
            return value
    return None


def _number(env: Mapping[str, str], key: str, default: float, kind: type = float) -> Any:
    raw = env.get(key)
    if raw is None or raw == "":
        return kind(default)
    try:
        value = kind(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for {key}: {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{key} must not be negative: {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    rpc_url: Optional[str] = None
    private_key: Optional[str] = None
    contract_address: Optional[str] = None
    chain_id: int = SEPOLIA_CHAIN_ID
    tx_timeout: float = 300.0
    status_unit_seconds: float = 1.0
    success_units: float = 2.0
    error_units: float = 3.0
    local_ledger_path: Optional[Path] = None

    @staticmethod
    def from_env(
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Settings:
        """Load settings; ``environ`` defaults to ``os.environ``.

        When ``env_file`` is given it is loaded first without overriding
        variables that are already set.
        """
        if env_file is not None:
            load_dotenv(env_file, override=False)
        env = os.environ if environ is None else environ

        ledger_path = _get(env, "CIPHERLEDGER_LOCAL_LEDGER")
        return Settings(
            rpc_url=_get(env, "CIPHERLEDGER_RPC_URL", "SEPOLIA_RPC_URL"),
            private_key=_get(env, "CIPHERLEDGER_PRIVATE_KEY", "PRIVATE_KEY"),
            contract_address=_get(env, "CIPHERLEDGER_CONTRACT_ADDRESS"),
            chain_id=_number(env, "CIPHERLEDGER_CHAIN_ID", SEPOLIA_CHAIN_ID, int),
            tx_timeout=_number(env, "CIPHERLEDGER_TX_TIMEOUT", 300.0),
            status_unit_seconds=_number(env, "CIPHERLEDGER_STATUS_UNIT", 1.0),
            success_units=_number(env, "CIPHERLEDGER_SUCCESS_UNITS", 2.0),
            error_units=_number(env, "CIPHERLEDGER_ERROR_UNITS", 3.0),
            local_ledger_path=Path(ledger_path) if ledger_path else None,
        )

    def status_config(self) -> dict[str, Any]:
        return {
            "unit_seconds": self.status_unit_seconds,
            "success_units": self.success_units,
            "error_units": self.error_units,
        }
