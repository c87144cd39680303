"""Cipherledger CLI — command-line access to the record lifecycle.

Usage:
    cipherledger --local list --search lease --tab verified
    cipherledger --local stats
    cipherledger --local create --name "Lease" --value 42 --description "Office lease"
    cipherledger --local decrypt --id contract-1700000000000
    cipherledger check

Without ``--local`` the ledger is the record contract configured through
the environment (or ``--env-file``). Creating and decrypting need an
encryption backend, which is only available in ``--local`` mode.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from cipherledger.config import Settings
from cipherledger.crypto.local import LocalCrypto
from cipherledger.errors import CipherLedgerError
from cipherledger.ledger.memory import InMemoryLedger
from cipherledger.ledger.web3_gateway import Web3LedgerGateway
from cipherledger.models.record import EncryptedRecord, RecordTab
from cipherledger.models.status import TransactionStatus
from cipherledger.models.wallet import WalletIdentity
from cipherledger.persistence.record_store import EncryptedRecordStore
from cipherledger.status.tracker import TransactionStatusTracker
from cipherledger.workflow.orchestrator import (
    RecordLifecycleOrchestrator,
    parse_contract_value,
)

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILE = Path(".cipherledger") / "ledger.json"
LOCAL_SIGNER = "0x" + "a1" * 20


class _NoCrypto:
    """Placeholder capability for ledgers without an encryption backend."""

    async def encrypt(self, target_address: str, identity: str, plaintext: int):
        raise CipherLedgerError("No encryption backend for this ledger; use --local")

    async def verify(self, handles, target_address, submit):
        raise CipherLedgerError("No encryption backend for this ledger; use --local")


def _print_status(status: TransactionStatus) -> None:
    if status.visible:
        print(f"[{status.kind.value}] {status.message}", file=sys.stderr)


def _record_json(record: EncryptedRecord) -> dict[str, Any]:
    data = asdict(record)
    data["created_at"] = record.created_at.strftime("%Y-%m-%dT%H:%M:%SZ")
    return data


def _make_orchestrator(
    args: argparse.Namespace,
) -> tuple[RecordLifecycleOrchestrator, Optional[WalletIdentity]]:
    """Wire gateway, store, crypto and tracker from arguments and settings."""
    settings = Settings.from_env(env_file=args.env_file)
    tracker = TransactionStatusTracker(settings.status_config())
    tracker.subscribe(_print_status)

    if args.local:
        ledger_file = args.ledger_file or settings.local_ledger_path or DEFAULT_LEDGER_FILE
        ledger_file.parent.mkdir(parents=True, exist_ok=True)
        crypto = LocalCrypto()
        gateway = InMemoryLedger(
            signer=LOCAL_SIGNER,
            proof_checker=crypto.check_decryption_proof,
            storage_path=ledger_file,
        )
        wallet: Optional[WalletIdentity] = WalletIdentity(LOCAL_SIGNER)
        encryptor = decryptor = crypto
        client = crypto
    else:
        gateway = Web3LedgerGateway(
            settings.rpc_url,
            settings.contract_address,
            private_key=settings.private_key,
            chain_id=settings.chain_id,
            tx_timeout=settings.tx_timeout,
        )
        address = gateway.signer_address
        wallet = WalletIdentity(address) if address else None
        encryptor = decryptor = _NoCrypto()
        client = None

    orchestrator = RecordLifecycleOrchestrator(
        gateway,
        EncryptedRecordStore(gateway),
        encryptor=encryptor,
        decryptor=decryptor,
        tracker=tracker,
        crypto_client=client,
    )
    return orchestrator, wallet


async def _list(args: argparse.Namespace) -> int:
    orch, _ = _make_orchestrator(args)
    await orch.refresh()
    for record in orch.store.filter(search=args.search, tab=args.tab):
        print(json.dumps(_record_json(record), sort_keys=True))
    return 0


async def _stats(args: argparse.Namespace) -> int:
    orch, _ = _make_orchestrator(args)
    await orch.refresh()
    stats = asdict(orch.store.stats())
    loaded_at = orch.store.loaded_at
    stats["loaded_at"] = loaded_at.strftime("%Y-%m-%dT%H:%M:%SZ") if loaded_at else None
    print(json.dumps(stats, indent=2))
    return 0


async def _create(args: argparse.Namespace) -> int:
    orch, wallet = _make_orchestrator(args)
    record = await orch.create(
        args.name, args.description, parse_contract_value(args.value), wallet,
    )
    if record is None:
        print("Created; record not yet visible on the ledger")
    else:
        print(f"Created record: {record.id}")
    return 0


async def _decrypt(args: argparse.Namespace) -> int:
    orch, wallet = _make_orchestrator(args)
    value = await orch.decrypt_and_verify(args.id, wallet)
    if value is None:
        if orch.last_error is not None:
            return 1
        record = orch.store.get(args.id)
        value = record.verified_value if record is not None else None
    print(json.dumps({"id": args.id, "value": value}))
    return 0


async def _check(args: argparse.Namespace) -> int:
    orch, _ = _make_orchestrator(args)
    return 0 if await orch.check_availability() else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cipherledger",
        description="Encrypted contract values — create, decrypt and verify on-chain",
    )
    parser.add_argument("--env-file", type=Path, help="Load settings from this .env file")
    parser.add_argument("--local", action="store_true",
                        help="Use the local file-backed ledger and development crypto")
    parser.add_argument("--ledger-file", type=Path,
                        help=f"Local ledger file (default: {DEFAULT_LEDGER_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # list
    p_list = sub.add_parser("list", help="List records")
    p_list.add_argument("--search", default="", help="Match name or description")
    p_list.add_argument("--tab", default=RecordTab.ALL.value,
                        choices=[t.value for t in RecordTab])

    # stats
    sub.add_parser("stats", help="Show record statistics")

    # create
    p_create = sub.add_parser("create", help="Encrypt a value and create a record")
    p_create.add_argument("--name", required=True, help="Record name")
    p_create.add_argument("--value", required=True, help="Contract value (digits)")
    p_create.add_argument("--description", default="", help="Record description")

    # decrypt
    p_dec = sub.add_parser("decrypt", help="Decrypt and verify a record's value")
    p_dec.add_argument("--id", required=True, help="Record ID")

    # check
    sub.add_parser("check", help="Check contract availability")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "list": _list,
        "stats": _stats,
        "create": _create,
        "decrypt": _decrypt,
        "check": _check,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(handler(args))
    except CipherLedgerError as exc:
        print(f"Failed: {exc.message or exc.kind}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
