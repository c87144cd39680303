"""Tests for the decrypt & verify flow — path selection, races, failures."""

from __future__ import annotations

import asyncio

import pytest

from cipherledger.crypto.local import LocalCrypto
from cipherledger.errors import (
    AlreadyVerifiedError,
    InitializationError,
    NotConnectedError,
    RecordBusyError,
    SubmissionError,
    VerificationError,
)
from cipherledger.models.status import StatusKind, TransactionStatus
from cipherledger.status.tracker import TransactionStatusTracker
from cipherledger.workflow.orchestrator import RecordLifecycleOrchestrator

from conftest import (
    SIGNER,
    STATUS_CONFIG,
    WALLET,
    CountingCrypto,
    FlakyLedger,
    SpyStore,
    StubCrypto,
    run,
)


def _stub_setup(clear_values: dict[str, int]):
    ledger = FlakyLedger(signer=SIGNER)
    store = SpyStore(ledger)
    tracker = TransactionStatusTracker(STATUS_CONFIG)
    stub = StubCrypto(clear_values=clear_values)
    orch = RecordLifecycleOrchestrator(
        ledger, store, encryptor=stub, decryptor=stub, tracker=tracker,
    )
    return orch, ledger, store, tracker, stub


async def _create(orch: RecordLifecycleOrchestrator, value: int) -> str:
    record = await orch.create("Lease", "Office lease", value, WALLET)
    return record.id


class TestUnverifiedPath:
    def test_stubbed_decrypt_returns_clear_value(self) -> None:
        orch, ledger, store, tracker, stub = _stub_setup({"H1": 7})
        ledger.seed("contract-1", handle="H1")

        value = run(orch.decrypt_and_verify("contract-1", WALLET))

        assert value == 7
        assert len(ledger.calls_to("verify_decryption")) == 1
        assert store.reload_count == 1
        assert tracker.current == TransactionStatus(
            True, StatusKind.SUCCESS, "Decryption verified on-chain",
        )
        assert store.get("contract-1").verified_value == 7

    def test_full_round_trip_with_local_crypto(self, orchestrator, ledger, store) -> None:
        async def scenario() -> int:
            record_id = await _create(orchestrator, 42)
            return await orchestrator.decrypt_and_verify(record_id, WALLET)

        assert run(scenario()) == 42
        (record,) = store.records
        assert record.is_verified and record.verified_value == 42

    def test_pending_published_while_in_flight(self, orchestrator, ledger, crypto,
                                               tracker) -> None:
        ledger.seed("contract-1")
        seen: list[TransactionStatus] = []

        async def scenario() -> None:
            await orchestrator.initialize()
            enc = await crypto.encrypt(ledger.address, SIGNER, 3)
            ledger.records["contract-1"].ciphertext_handle = enc.ciphertext
            tracker.subscribe(seen.append)
            await orchestrator.decrypt_and_verify("contract-1", WALLET)

        run(scenario())
        messages = [s.message for s in seen]
        assert messages == ["Verifying decryption on-chain...", "Decryption verified on-chain"]

    def test_busy_while_in_flight_and_cleared_after(self, orchestrator, ledger) -> None:
        observed: list[bool] = []

        class Probe(CountingCrypto):
            async def verify(self, handles, target_address, submit):
                observed.append(orchestrator.is_decrypting("contract-1"))
                return await super().verify(handles, target_address, submit)

        async def scenario() -> None:
            probe = Probe()
            await probe.initialize()
            enc = await probe.encrypt(ledger.address, SIGNER, 3)
            ledger.seed("contract-1", handle=enc.ciphertext)
            orchestrator._decryptor = probe
            await orchestrator.decrypt_and_verify("contract-1", WALLET)

        run(scenario())
        assert observed == [True]
        assert orchestrator.busy_records == frozenset()


class TestVerifiedPath:
    def test_already_verified_skips_decryption(self, orchestrator, ledger, crypto,
                                               store, tracker) -> None:
        ledger.seed("contract-1", verified_value=5)

        value = run(orchestrator.decrypt_and_verify("contract-1", WALLET))

        assert value == 5
        assert ledger.reads_of("get_ciphertext_handle") == []
        assert crypto.verify_calls == []
        assert ledger.calls_to("verify_decryption") == []
        assert store.reload_count == 0
        assert tracker.current == TransactionStatus(
            True, StatusKind.SUCCESS, "Value already verified on-chain",
        )
        assert store.get("contract-1").verified_value == 5

    def test_fresh_read_beats_stale_store(self, orchestrator, ledger, store) -> None:
        ledger.seed("contract-1")
        run(store.reload())
        assert not store.get("contract-1").is_verified

        ledger.mark_verified("contract-1", 9)
        assert run(orchestrator.decrypt_and_verify("contract-1", WALLET)) == 9
        assert store.get("contract-1").verified_value == 9


class TestAlreadyVerifiedRace:
    def test_race_on_submit_reports_success(self) -> None:
        orch, ledger, store, tracker, _ = _stub_setup({"H1": 7})
        ledger.seed("contract-1", handle="H1")
        ledger.verify_error = AlreadyVerifiedError("Data already verified")

        value = run(orch.decrypt_and_verify("contract-1", WALLET))

        assert value is None
        assert tracker.current.kind == StatusKind.SUCCESS
        assert tracker.current.message == "Value already verified on-chain"
        assert store.reload_count == 1
        assert orch.last_error is None

    def test_wrapped_race_is_still_recognised(self) -> None:
        orch, ledger, store, tracker, stub = _stub_setup({"H1": 7})
        ledger.seed("contract-1", handle="H1")

        class WrappingStub(StubCrypto):
            async def verify(self, handles, target_address, submit):
                try:
                    return await super().verify(handles, target_address, submit)
                except SubmissionError as exc:
                    raise RuntimeError("relayer call failed") from exc

        orch._decryptor = WrappingStub(clear_values={"H1": 7})
        ledger.verify_error = AlreadyVerifiedError("Data already verified")

        assert run(orch.decrypt_and_verify("contract-1", WALLET)) is None
        assert tracker.current.kind == StatusKind.SUCCESS

    def test_concurrent_parties_one_wins(self, ledger, crypto) -> None:
        def party() -> RecordLifecycleOrchestrator:
            return RecordLifecycleOrchestrator(
                ledger, SpyStore(ledger), encryptor=crypto, decryptor=crypto,
                tracker=TransactionStatusTracker(STATUS_CONFIG), crypto_client=crypto,
            )

        first, second = party(), party()

        async def scenario():
            record_id = await _create(first, 11)
            return await asyncio.gather(
                first.decrypt_and_verify(record_id, WALLET),
                second.decrypt_and_verify(record_id, WALLET),
            )

        results = run(scenario())
        assert sorted(results, key=lambda v: v is None) == [11, None]
        assert first.tracker.current.kind == StatusKind.SUCCESS
        assert second.tracker.current.kind == StatusKind.SUCCESS
        for orch in (first, second):
            (record,) = orch.store.records
            assert record.verified_value == 11


class TestFailures:
    def test_not_connected_raises(self, orchestrator, ledger, tracker) -> None:
        ledger.seed("contract-1")
        with pytest.raises(NotConnectedError):
            run(orchestrator.decrypt_and_verify("contract-1", None))
        assert ledger.reads == []
        assert tracker.current.kind == StatusKind.ERROR

    def test_submission_failure_reports_error(self) -> None:
        orch, ledger, store, tracker, _ = _stub_setup({"H1": 7})
        ledger.seed("contract-1", handle="H1")
        ledger.verify_error = SubmissionError("gas too low")

        assert run(orch.decrypt_and_verify("contract-1", WALLET)) is None
        assert tracker.current == TransactionStatus(
            True, StatusKind.ERROR, "Decryption failed: gas too low",
        )
        assert isinstance(orch.last_error, VerificationError)
        assert store.reload_count == 0
        assert not orch.is_decrypting("contract-1")

    def test_unknown_record(self, orchestrator, tracker) -> None:
        assert run(orchestrator.decrypt_and_verify("missing", WALLET)) is None
        assert tracker.current.kind == StatusKind.ERROR
        assert orchestrator.last_error.kind == "verification_failure"

    def test_result_without_queried_handle(self) -> None:
        orch, ledger, _, tracker, stub = _stub_setup({"H1": 7})
        ledger.seed("contract-1", handle="H1")

        class WrongHandle(StubCrypto):
            async def verify(self, handles, target_address, submit):
                outcome = await super().verify(handles, target_address, submit)
                return type(outcome)(
                    decryption_result=type(outcome.decryption_result)(clear_values={"H2": 7}),
                )

        orch._decryptor = WrongHandle(clear_values={"H1": 7})
        assert run(orch.decrypt_and_verify("contract-1", WALLET)) is None
        assert tracker.current.kind == StatusKind.ERROR

    def test_second_call_same_record_rejected(self, orchestrator, ledger, crypto) -> None:
        async def scenario():
            record_id = await _create(orchestrator, 4)
            return await asyncio.gather(
                orchestrator.decrypt_and_verify(record_id, WALLET),
                orchestrator.decrypt_and_verify(record_id, WALLET),
                return_exceptions=True,
            )

        first, second = run(scenario())
        assert first == 4
        assert isinstance(second, RecordBusyError)
        assert len(ledger.calls_to("verify_decryption")) == 1

    def test_different_records_run_concurrently(self, orchestrator, ledger) -> None:
        async def scenario():
            a = await _create(orchestrator, 1)
            b = await _create(orchestrator, 2)
            return await asyncio.gather(
                orchestrator.decrypt_and_verify(a, WALLET),
                orchestrator.decrypt_and_verify(b, WALLET),
            )

        assert run(scenario()) == [1, 2]


class TestHousekeeping:
    def test_availability_check(self, orchestrator, ledger, tracker) -> None:
        assert run(orchestrator.check_availability()) is True
        assert tracker.current.message == "Contract availability check passed"

        ledger.available = False
        assert run(orchestrator.check_availability()) is False
        assert tracker.current.kind == StatusKind.ERROR

    def test_refresh_failure_keeps_snapshot(self, orchestrator, ledger, store, tracker) -> None:
        ledger.seed("contract-1")
        run(orchestrator.refresh())
        ledger.listing_fails = True
        records = run(orchestrator.refresh())
        assert [r.id for r in records] == ["contract-1"]
        assert tracker.current.message == "Failed to load records"

    def test_contract_address_cached(self, orchestrator, ledger) -> None:
        assert run(orchestrator.contract_address()) == ledger.address
        ledger.address = "0x" + "ff" * 20
        assert run(orchestrator.contract_address()) != ledger.address


class SlowInitCrypto(CountingCrypto):
    """Crypto client whose initialization yields to the event loop."""

    async def initialize(self) -> None:
        await asyncio.sleep(0.01)
        await super().initialize()


class TestConcurrentStartup:
    def _orchestrator(self, ledger, store, tracker, crypto) -> RecordLifecycleOrchestrator:
        return RecordLifecycleOrchestrator(
            ledger, store, encryptor=crypto, decryptor=crypto,
            tracker=tracker, crypto_client=crypto,
        )

    def test_same_record_busy_during_initialization(self, ledger, store, tracker) -> None:
        slow = SlowInitCrypto()
        orch = self._orchestrator(ledger, store, tracker, slow)

        async def scenario():
            setup = LocalCrypto()
            await setup.initialize()
            enc = await setup.encrypt(ledger.address, SIGNER, 5)
            ledger.seed("contract-1", handle=enc.ciphertext)
            return await asyncio.gather(
                orch.decrypt_and_verify("contract-1", WALLET),
                orch.decrypt_and_verify("contract-1", WALLET),
                return_exceptions=True,
            )

        first, second = run(scenario())
        assert first == 5
        assert isinstance(second, RecordBusyError)
        assert slow.verify_calls == [[ledger.records["contract-1"].ciphertext_handle]]
        assert len(ledger.calls_to("verify_decryption")) == 1
        assert slow.init_calls == 1
        assert orch.busy_records == frozenset()

    def test_concurrent_flows_share_one_initialization(self, ledger, store, tracker) -> None:
        slow = SlowInitCrypto()
        orch = self._orchestrator(ledger, store, tracker, slow)
        ledger.seed("contract-1", verified_value=1)
        ledger.seed("contract-2", verified_value=2)

        async def scenario():
            return await asyncio.gather(
                orch.decrypt_and_verify("contract-1", WALLET),
                orch.decrypt_and_verify("contract-2", WALLET),
            )

        assert run(scenario()) == [1, 2]
        assert slow.init_calls == 1

    def test_failed_initialization_can_be_retried(self, ledger, store, tracker) -> None:
        slow = SlowInitCrypto()
        slow.init_error = RuntimeError("relayer offline")
        orch = self._orchestrator(ledger, store, tracker, slow)
        ledger.seed("contract-1", verified_value=3)

        with pytest.raises(InitializationError):
            run(orch.decrypt_and_verify("contract-1", WALLET))
        assert tracker.current.message == "Encryption client initialization failed"
        assert not orch.is_decrypting("contract-1")

        slow.init_error = None
        assert run(orch.decrypt_and_verify("contract-1", WALLET)) == 3
        assert slow.init_calls == 2
