"""
Encryption gateway: turns a plaintext integer into a ciphertext handle and
input proof bound to a contract address and the submitting account.
"""

from fhe_recommender.errors import EncryptionError
from fhe_recommender.infrastructure.observability.logging import get_logger
from fhe_recommender.models.domain.content_domain import EncryptedInput

from .relayer_client import FheRuntime, RelayerError

logger = get_logger(__name__)

UINT32_MAX = 2**32 - 1


class EncryptionGateway:
    def __init__(self, runtime: FheRuntime):
        self._runtime = runtime

    async def encrypt(
        self, contract_address: str, account_address: str, plaintext: int
    ) -> EncryptedInput:
        """
        Encrypt a uint32 value for the given contract and account.

        Args:
            contract_address: Registry contract the ciphertext is bound to
            account_address: Account that will submit the ciphertext
            plaintext: Value to encrypt

        Returns:
            EncryptedInput with the ciphertext handle and input proof

        Raises:
            SubsystemNotReady: If the FHE runtime is not initialized
            EncryptionError: On malformed input or relayer/backend failure
        """
        self._runtime.require_ready("encrypt")
        _validate_encrypt_args(contract_address, account_address, plaintext)

        try:
            ciphertext = self._runtime.backend.encrypt_uint32(
                contract_address, account_address, plaintext
            )
            response = await self._runtime.relayer.request_input_proof(
                contract_address, account_address, ciphertext
            )
            encrypted = self._runtime.backend.decode_input_proof(response)
        except RelayerError as e:
            logger.error("Input proof request failed", error=str(e), status_code=e.status_code)
            raise EncryptionError(f"Encryption failed: {e}") from e
        except Exception as e:
            logger.error("FHE backend encryption failed", error=str(e), error_type=type(e).__name__)
            raise EncryptionError(f"Encryption failed: {e}") from e

        logger.debug(
            "Value encrypted",
            contract_address=contract_address,
            account_address=account_address,
        )
        return encrypted


def _validate_encrypt_args(contract_address: str, account_address: str, plaintext: int) -> None:
    if not contract_address:
        raise EncryptionError("Contract address is required for encryption")
    if not account_address:
        raise EncryptionError("Account address is required for encryption")
    if isinstance(plaintext, bool) or not isinstance(plaintext, int):
        raise EncryptionError(f"Plaintext must be an integer, got {type(plaintext).__name__}")
    if not 0 <= plaintext <= UINT32_MAX:
        raise EncryptionError(f"Plaintext {plaintext} is outside the uint32 range")
