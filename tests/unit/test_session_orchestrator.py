import asyncio
from unittest.mock import AsyncMock

import pytest

from fhe_recommender.errors import SubsystemNotReady
from fhe_recommender.models.domain.content_domain import DecryptionResult
from fhe_recommender.models.domain.visibility import UNRESOLVED, LocallyDecrypted, OnChainVerified
from fhe_recommender.services.infrastructure.relayer_client import RelayerError
from fhe_recommender.services.lifecycle_service import DecryptOutcomeKind


ACCOUNT = "0xAlice"


@pytest.mark.asyncio
async def test_connect_initializes_and_loads(orchestrator, registry_contract, fhe_backend):
    registry_contract.seed("content-1")

    await orchestrator.on_wallet_changed(True, ACCOUNT)

    snapshot = orchestrator.snapshot()
    assert snapshot.fhe_initialized is True
    assert snapshot.content_loaded is True
    assert snapshot.ready is True
    assert fhe_backend.loaded_keys is not None
    assert [item.id for item in orchestrator.lifecycle.items] == ["content-1"]


@pytest.mark.asyncio
async def test_concurrent_connects_initialize_once(orchestrator, runtime, monkeypatch):
    calls = {"count": 0}
    release = asyncio.Event()

    async def _slow_initialize():
        calls["count"] += 1
        await release.wait()
        runtime._initialized = True

    monkeypatch.setattr(runtime, "initialize", _slow_initialize)
    orchestrator._wallet_connected = True

    first = asyncio.create_task(orchestrator.ensure_initialized())
    second = asyncio.create_task(orchestrator.ensure_initialized())
    await asyncio.sleep(0)
    assert orchestrator.initializing is True
    release.set()

    assert await first is True
    assert await second is True
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_initialization_failure_reports_and_allows_retry(orchestrator, fake_relayer, runtime):
    fake_relayer.fail_keyurl = RuntimeError("keys unavailable")

    await orchestrator.on_wallet_changed(True, ACCOUNT)

    assert runtime.is_initialized is False
    assert orchestrator.status.current.phase == "error"
    assert orchestrator.status.current.message == "FHEVM initialization failed"

    fake_relayer.fail_keyurl = None
    assert await orchestrator.ensure_initialized() is True
    assert runtime.is_initialized is True


@pytest.mark.asyncio
async def test_encrypt_before_initialization_fails_fast(orchestrator):
    with pytest.raises(SubsystemNotReady):
        await orchestrator._encryption.encrypt("0xRegistry", ACCOUNT, 10)


@pytest.mark.asyncio
async def test_disconnected_wallet_skips_load(orchestrator, registry_contract):
    registry_contract.seed("content-1")

    items = await orchestrator.load_content()

    assert items == []
    assert registry_contract.calls == []


@pytest.mark.asyncio
async def test_disconnect_abandons_in_flight_load(orchestrator, registry_contract, monkeypatch):
    registry_contract.seed("content-1")
    release = asyncio.Event()
    original = registry_contract.get_all_business_ids

    async def _slow_ids():
        await release.wait()
        return await original()

    monkeypatch.setattr(registry_contract, "get_all_business_ids", _slow_ids)
    orchestrator._wallet_connected = True
    orchestrator._account_address = ACCOUNT

    load = asyncio.create_task(orchestrator.load_content())
    await asyncio.sleep(0)
    assert orchestrator.snapshot().loading is True

    await orchestrator.on_wallet_changed(False)
    assert orchestrator.snapshot().loading is False
    release.set()

    assert await load == []
    assert orchestrator.lifecycle.items == []
    assert orchestrator.snapshot().content_loaded is False


@pytest.mark.asyncio
async def test_load_failure_publishes_error(orchestrator, registry_contract):
    registry_contract.fail_listing = True
    orchestrator._wallet_connected = True

    await orchestrator.load_content()

    assert orchestrator.status.current.message == "Failed to load data"


@pytest.mark.asyncio
async def test_actions_require_wallet(orchestrator):
    assert await orchestrator.decrypt("content-1") is None
    assert orchestrator.status.current.message == "Please connect wallet first"

    assert await orchestrator.create_content({"title": "t"}) is None
    assert orchestrator.status.current.phase == "error"


@pytest.mark.asyncio
async def test_decrypt_verified_item_reports_already_verified(
    orchestrator, registry_contract, fake_relayer
):
    registry_contract.seed("content-1", verified_score=77)
    await orchestrator.on_wallet_changed(True, ACCOUNT)

    outcome = await orchestrator.decrypt("content-1")

    assert outcome.value == 77
    assert outcome.kind is DecryptOutcomeKind.ALREADY_VERIFIED
    assert fake_relayer.public_decrypt_calls == []
    assert orchestrator.status.current.phase == "success"
    assert orchestrator.status.current.message == "Data already verified on-chain"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "decrypt_error",
    [RelayerError("Relayer public-decrypt failed: Data already verified"), None],
    ids=["relayer-reports-race", "contract-reverts-proof"],
)
async def test_decrypt_race_shows_informational_status(
    orchestrator, registry_contract, fake_relayer, decrypt_error
):
    registry_contract.seed("content-1")
    await orchestrator.on_wallet_changed(True, ACCOUNT)
    # Another party verifies the score while our decryption is in flight.
    fake_relayer.before_decrypt = lambda: registry_contract.mark_verified("content-1", 33)
    fake_relayer.decrypt_error = decrypt_error

    outcome = await orchestrator.decrypt("content-1")

    assert outcome.kind is DecryptOutcomeKind.VERIFIED_BY_RACE
    assert orchestrator.status.current.phase == "success"
    assert orchestrator.status.current.message == "Data is already verified on-chain"
    assert orchestrator.lifecycle.visibility("content-1") == OnChainVerified(33)


@pytest.mark.asyncio
async def test_decrypt_failure_publishes_error(orchestrator, registry_contract, fake_relayer):
    registry_contract.seed("content-1")
    await orchestrator.on_wallet_changed(True, ACCOUNT)
    fake_relayer.decrypt_error = RelayerError("Relayer public-decrypt failed: gateway down")

    assert await orchestrator.decrypt("content-1") is None
    assert orchestrator.status.current.phase == "error"
    assert orchestrator.status.current.message.startswith("Decryption failed: ")
    assert orchestrator.lifecycle.visibility("content-1") == UNRESOLVED


@pytest.mark.asyncio
async def test_late_decrypt_does_not_resurrect_closed_item(orchestrator, registry_contract):
    registry_contract.seed("content-1")
    await orchestrator.on_wallet_changed(True, ACCOUNT)
    release = asyncio.Event()

    async def _slow_verify(handles, contract_address, on_proof_ready):
        await release.wait()
        return DecryptionResult(clear_values={handles[0]: 42})

    gateway = AsyncMock()
    gateway.verify_decryption.side_effect = _slow_verify
    orchestrator.lifecycle._gateway = gateway

    orchestrator.open_item("content-1")
    decrypt = asyncio.create_task(orchestrator.decrypt_open_item())
    await asyncio.sleep(0)
    orchestrator.close_item()
    release.set()
    await decrypt

    assert orchestrator.open_item_state is None
    assert orchestrator.lifecycle.visibility("content-1") == UNRESOLVED


@pytest.mark.asyncio
async def test_open_item_decrypt_and_hide(orchestrator, registry_contract):
    registry_contract.seed("content-1")
    await orchestrator.on_wallet_changed(True, ACCOUNT)
    gateway = AsyncMock()
    gateway.verify_decryption.return_value = DecryptionResult(
        clear_values={"handle-content-1": 42}
    )
    orchestrator.lifecycle._gateway = gateway

    orchestrator.open_item("content-1")
    await orchestrator.decrypt_open_item()

    assert orchestrator.open_item_state == LocallyDecrypted(42)
    assert orchestrator.stats_for("content-1").match_score == 42

    orchestrator.hide_decrypted("content-1")
    assert orchestrator.open_item_state == UNRESOLVED
    assert orchestrator.stats_for("content-1").is_estimate is True


@pytest.mark.asyncio
async def test_availability_check(orchestrator, registry_contract):
    assert await orchestrator.check_availability() is True
    assert orchestrator.status.current.message == "System is available and ready!"

    registry_contract.available = False
    assert await orchestrator.check_availability() is False
    assert orchestrator.status.current.message == "Availability check failed"


@pytest.mark.asyncio
async def test_create_content_backend_crash_publishes_error(orchestrator, fhe_backend, monkeypatch):
    await orchestrator.on_wallet_changed(True, ACCOUNT)

    def _crash(*args):
        raise RuntimeError("wasm trap")

    monkeypatch.setattr(fhe_backend, "encrypt_uint32", _crash)

    assert await orchestrator.create_content({"title": "x", "score": "5"}) is None
    assert orchestrator.status.current.phase == "error"
    assert orchestrator.status.current.message == "Submission failed: Encryption failed: wasm trap"
    assert orchestrator.snapshot().creating is False


@pytest.mark.asyncio
async def test_create_content_unexpected_error_publishes_error(orchestrator, monkeypatch):
    await orchestrator.on_wallet_changed(True, ACCOUNT)
    monkeypatch.setattr(
        orchestrator._registry, "create", AsyncMock(side_effect=OSError("socket closed"))
    )

    assert await orchestrator.create_content({"title": "x", "score": "5"}) is None
    assert orchestrator.status.current.phase == "error"
    assert orchestrator.status.current.message == "Submission failed: socket closed"


@pytest.mark.asyncio
async def test_concurrent_decrypts_track_in_flight(orchestrator, registry_contract):
    registry_contract.seed("content-1")
    registry_contract.seed("content-2")
    await orchestrator.on_wallet_changed(True, ACCOUNT)
    releases = {"handle-content-1": asyncio.Event(), "handle-content-2": asyncio.Event()}

    async def _slow_verify(handles, contract_address, on_proof_ready):
        await releases[handles[0]].wait()
        return DecryptionResult(clear_values={handles[0]: 5})

    gateway = AsyncMock()
    gateway.verify_decryption.side_effect = _slow_verify
    orchestrator.lifecycle._gateway = gateway

    first = asyncio.create_task(orchestrator.decrypt("content-1"))
    second = asyncio.create_task(orchestrator.decrypt("content-2"))
    for _ in range(5):
        await asyncio.sleep(0)
    assert orchestrator.snapshot().decrypting is True

    releases["handle-content-1"].set()
    await first
    assert orchestrator.snapshot().decrypting is True

    releases["handle-content-2"].set()
    await second
    assert orchestrator.snapshot().decrypting is False
