"""
Decryption/verification gateway.

Resolves ciphertext handles to clear values through the relayer, then hands
the ABI-encoded clear values and decryption proof to a caller-supplied
continuation, which is expected to submit them to the registry. The
continuation's outcome propagates back to the caller of
``verify_decryption``.
"""

from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from fhe_recommender.errors import DecryptionError
from fhe_recommender.infrastructure.observability.logging import get_logger
from fhe_recommender.models.domain.content_domain import DecryptionResult

from .relayer_client import FheRuntime, RelayerError

logger = get_logger(__name__)

ProofSubmitter = Callable[[str, str], Awaitable[Any]]


class ProofContinuation:
    """Single-shot wrapper around a proof submitter."""

    def __init__(self, submit: ProofSubmitter):
        self._submit = submit
        self._invoked = False

    @property
    def invoked(self) -> bool:
        return self._invoked

    async def __call__(self, abi_encoded_clear_values: str, decryption_proof: str) -> Any:
        if self._invoked:
            raise RuntimeError("Proof continuation already invoked")
        self._invoked = True
        return await self._submit(abi_encoded_clear_values, decryption_proof)


class DecryptionGateway:
    def __init__(self, runtime: FheRuntime):
        self._runtime = runtime

    async def verify_decryption(
        self,
        handles: Sequence[str],
        contract_address: str,
        on_proof_ready: ProofSubmitter,
    ) -> DecryptionResult:
        """
        Publicly decrypt handles and submit the proof via ``on_proof_ready``.

        Raises:
            SubsystemNotReady: If the FHE runtime is not initialized
            DecryptionError: If the relayer or backend fails, or a handle is missing
        """
        self._runtime.require_ready("decrypt")
        handles = list(handles)
        if not handles:
            raise DecryptionError("No ciphertext handles to decrypt")

        try:
            response = await self._runtime.relayer.public_decrypt(handles, contract_address)
            result = self._runtime.backend.decode_public_decrypt(handles, response)
        except RelayerError as e:
            logger.error(
                "Public decryption failed",
                handle_count=len(handles),
                status_code=e.status_code,
                error=str(e),
            )
            raise DecryptionError(str(e)) from e
        except Exception as e:
            logger.error(
                "FHE backend decryption failed", error=str(e), error_type=type(e).__name__
            )
            raise DecryptionError(f"FHE backend error: {e}") from e

        missing = [handle for handle in handles if handle not in result.clear_values]
        if missing:
            raise DecryptionError(f"Decryption result missing {len(missing)} handle(s)")

        # Errors from the submitter propagate unchanged.
        await on_proof_ready(result.abi_encoded_clear_values, result.decryption_proof)

        logger.info("Decryption verified", handle_count=len(handles))
        return result
