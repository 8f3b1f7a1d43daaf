import time
from typing import Any

import pytest

from fhe_recommender.models.domain.content_domain import DecryptionResult, EncryptedInput
from fhe_recommender.repositories.content_registry import ContentRegistryClient
from fhe_recommender.services.infrastructure.decryption_gateway import DecryptionGateway
from fhe_recommender.services.infrastructure.encryption_gateway import EncryptionGateway
from fhe_recommender.services.infrastructure.relayer_client import FheRuntime
from fhe_recommender.services.lifecycle_service import LifecycleService
from fhe_recommender.services.session_orchestrator import SessionOrchestrator
from fhe_recommender.services.status_channel import StatusChannel

CONTRACT_ADDRESS = "0xRegistry"
ACCOUNT = "0xAlice"


class FakeTransaction:
    def __init__(self, on_final=None, error: Exception | None = None):
        self._on_final = on_final
        self._error = error
        self.waited = False

    async def wait(self):
        self.waited = True
        if self._error is not None:
            raise self._error
        if self._on_final is not None:
            self._on_final()
        return {"status": 1}


class FakeRegistryContract:
    """In-memory registry contract; writes land when the transaction is awaited."""

    def __init__(self):
        self.records: dict[str, dict[str, Any]] = {}
        self.handles: dict[str, str] = {}
        self.plaintexts: dict[str, int] = {}
        self.broken_ids: set[str] = set()
        self.fail_listing = False
        self.fail_create: Exception | None = None
        self.available = True
        self.calls: list[str] = []

    def seed(
        self,
        item_id: str,
        *,
        title: str = "Item",
        category_index: int = 0,
        views: int = 10,
        created_at: int | None = None,
        verified_score: int | None = None,
        plaintext: int = 42,
        description: str = "",
    ) -> None:
        self.records[item_id] = {
            "name": title,
            "publicValue1": category_index,
            "publicValue2": views,
            "description": description,
            "creator": "0xCreator",
            "timestamp": int(time.time()) if created_at is None else created_at,
            "isVerified": verified_score is not None,
            "decryptedValue": verified_score or 0,
        }
        self.handles[item_id] = f"handle-{item_id}"
        self.plaintexts[f"handle-{item_id}"] = plaintext

    def mark_verified(self, item_id: str, value: int) -> None:
        self.records[item_id]["isVerified"] = True
        self.records[item_id]["decryptedValue"] = value

    async def get_all_business_ids(self) -> list[str]:
        self.calls.append("get_all_business_ids")
        if self.fail_listing:
            raise RuntimeError("rpc unavailable")
        return list(self.records)

    async def get_business_data(self, item_id: str) -> dict[str, Any]:
        self.calls.append("get_business_data")
        if item_id in self.broken_ids:
            raise RuntimeError(f"call reverted for {item_id}")
        return dict(self.records[item_id])

    async def get_encrypted_value(self, item_id: str) -> str:
        self.calls.append("get_encrypted_value")
        return self.handles[item_id]

    async def create_business_data(
        self, item_id, title, encrypted_value, input_proof, category_index, view_seed, description
    ):
        self.calls.append("create_business_data")
        if self.fail_create is not None:
            raise self.fail_create

        def _land():
            self.records[item_id] = {
                "name": title,
                "publicValue1": category_index,
                "publicValue2": view_seed,
                "description": description,
                "creator": ACCOUNT,
                "timestamp": int(time.time()),
                "isVerified": False,
                "decryptedValue": 0,
            }
            self.handles[item_id] = encrypted_value

        return FakeTransaction(on_final=_land)

    async def verify_decryption(self, item_id, abi_encoded_clear_values, decryption_proof):
        self.calls.append("verify_decryption")
        if self.records[item_id]["isVerified"]:
            raise RuntimeError("execution reverted: Data already verified")
        value = int(abi_encoded_clear_values)
        return FakeTransaction(on_final=lambda: self.mark_verified(item_id, value))

    async def is_available(self) -> bool:
        self.calls.append("is_available")
        return self.available

    async def get_address(self) -> str:
        return CONTRACT_ADDRESS


class FakeFheBackend:
    """Stands in for the FHE primitives; plaintext travels as the ciphertext."""

    def __init__(self):
        self.loaded_keys: dict[str, Any] | None = None

    async def load_public_key(self, key_material):
        self.loaded_keys = key_material

    def encrypt_uint32(self, contract_address, account_address, value):
        return value.to_bytes(4, "big")

    def decode_input_proof(self, response):
        return EncryptedInput(handle=response["handles"][0], proof=response["inputProof"])

    def decode_public_decrypt(self, handles, response):
        values = {handle: int(response["values"][handle]) for handle in handles}
        return DecryptionResult(
            clear_values=values,
            abi_encoded_clear_values=str(values[handles[0]]),
            decryption_proof=response.get("proof", "0xproof"),
        )


class FakeRelayer:
    """Relayer double backed by the fake registry's plaintext table."""

    def __init__(self, contract: FakeRegistryContract):
        self.contract = contract
        self.public_decrypt_calls: list[list[str]] = []
        self.input_proof_calls = 0
        self.fail_keyurl: Exception | None = None
        self.decrypt_error: Exception | None = None
        self.before_decrypt = None
        self._next_handle = 0

    async def fetch_key_urls(self):
        if self.fail_keyurl is not None:
            raise self.fail_keyurl
        return {"fhePublicKey": {"urls": ["https://keys.example/pk"]}}

    async def request_input_proof(self, contract_address, account_address, ciphertext):
        self.input_proof_calls += 1
        self._next_handle += 1
        handle = f"new-handle-{self._next_handle}"
        self.contract.plaintexts[handle] = int.from_bytes(ciphertext, "big")
        return {"handles": [handle], "inputProof": "0xinput"}

    async def public_decrypt(self, handles, contract_address):
        self.public_decrypt_calls.append(list(handles))
        if self.before_decrypt is not None:
            self.before_decrypt()
        if self.decrypt_error is not None:
            raise self.decrypt_error
        return {"values": {h: self.contract.plaintexts[h] for h in handles}, "proof": "0xproof"}

    async def close(self):
        return None


@pytest.fixture
def registry_contract():
    return FakeRegistryContract()


@pytest.fixture
def fhe_backend():
    return FakeFheBackend()


@pytest.fixture
def fake_relayer(registry_contract):
    return FakeRelayer(registry_contract)


@pytest.fixture
def runtime(fake_relayer, fhe_backend):
    return FheRuntime(fake_relayer, fhe_backend)


@pytest.fixture
def registry(registry_contract):
    return ContentRegistryClient(registry_contract)


@pytest.fixture
def lifecycle(registry, runtime):
    return LifecycleService(registry, DecryptionGateway(runtime), contract_address=CONTRACT_ADDRESS)


@pytest.fixture
def status_channel():
    return StatusChannel(success_delay=0.05, error_delay=0.05)


@pytest.fixture
def orchestrator(runtime, registry, lifecycle, status_channel):
    return SessionOrchestrator(
        runtime,
        registry,
        lifecycle,
        EncryptionGateway(runtime),
        status=status_channel,
    )
