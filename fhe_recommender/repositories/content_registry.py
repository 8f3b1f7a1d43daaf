"""
Content registry client: read/write access to the ledger-backed catalog.

The contract binding itself is supplied by the embedding client through the
RegistryContract protocol; this module handles record mapping, partial
listing, and error classification.
"""

import random
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from fhe_recommender.config import settings
from fhe_recommender.errors import (
    RegistryReadError,
    RegistryWriteError,
    UserRejected,
    is_user_rejection_message,
)
from fhe_recommender.infrastructure.observability.logging import get_logger
from fhe_recommender.models.domain.content_domain import (
    ContentItem,
    CreateContentRequest,
    EncryptedInput,
    RegistryRecord,
    new_content_id,
)

logger = get_logger(__name__)


class TransactionHandle(Protocol):
    async def wait(self) -> Any: ...


class RegistryContract(Protocol):
    """Registry contract surface consumed by this client."""

    async def get_all_business_ids(self) -> list[str]: ...

    async def get_business_data(self, item_id: str) -> Mapping[str, Any]: ...

    async def get_encrypted_value(self, item_id: str) -> str: ...

    async def create_business_data(
        self,
        item_id: str,
        title: str,
        encrypted_value: str,
        input_proof: str,
        category_index: int,
        view_seed: int,
        description: str,
    ) -> TransactionHandle: ...

    async def verify_decryption(
        self, item_id: str, abi_encoded_clear_values: str, decryption_proof: str
    ) -> TransactionHandle: ...

    async def is_available(self) -> bool: ...

    async def get_address(self) -> str: ...


@dataclass(slots=True)
class SubmittedTransaction:
    """A submitted registry transaction; ``wait`` blocks until finality."""

    item_id: str
    transaction: TransactionHandle

    async def wait(self) -> Any:
        try:
            return await self.transaction.wait()
        except Exception as e:
            raise _classify_write_error(e, self.item_id) from e


def _classify_write_error(error: Exception, item_id: str | None) -> Exception:
    if isinstance(error, RegistryWriteError | UserRejected):
        return error
    message = str(error) or type(error).__name__
    if is_user_rejection_message(message):
        return UserRejected()
    return RegistryWriteError(message, item_id=item_id)


class ContentRegistryClient:
    def __init__(self, contract: RegistryContract, rng: random.Random | None = None):
        self._contract = contract
        self._rng = rng or random.Random()

    async def list_all(self) -> list[ContentItem]:
        """
        Fetch every item in the registry.

        Records that fail to load or map are logged and skipped, so one bad
        record never fails the whole listing.

        Raises:
            RegistryReadError: If the id listing itself fails
        """
        try:
            item_ids = list(await self._contract.get_all_business_ids())
        except Exception as e:
            logger.error("Failed to list registry ids", error=str(e), error_type=type(e).__name__)
            raise RegistryReadError(f"Failed to list content ids: {e}") from e

        items: list[ContentItem] = []
        for item_id in item_ids:
            try:
                items.append(await self.get(item_id))
            except RegistryReadError as e:
                logger.warning("Skipping unreadable content record", item_id=item_id, error=str(e))

        logger.info("Registry listing loaded", requested=len(item_ids), returned=len(items))
        return items

    async def get(self, item_id: str) -> ContentItem:
        """
        Fetch and map a single item.

        Raises:
            RegistryReadError: If the read fails or the record is malformed
        """
        try:
            raw = await self._contract.get_business_data(item_id)
        except Exception as e:
            raise RegistryReadError(f"Failed to read content {item_id}: {e}", item_id=item_id) from e

        try:
            record = RegistryRecord.model_validate(dict(raw))
            return ContentItem.from_registry_record(item_id, record)
        except (TypeError, ValueError) as e:
            raise RegistryReadError(f"Malformed content record {item_id}: {e}", item_id=item_id) from e

    async def get_ciphertext_handle(self, item_id: str) -> str:
        try:
            return await self._contract.get_encrypted_value(item_id)
        except Exception as e:
            raise RegistryReadError(
                f"Failed to read ciphertext handle for {item_id}: {e}", item_id=item_id
            ) from e

    async def create(
        self,
        request: CreateContentRequest,
        encrypted: EncryptedInput,
        item_id: str | None = None,
    ) -> SubmittedTransaction:
        """
        Submit a new content item. Callers must ``wait()`` on the result
        before treating the item as visible to other readers.

        Raises:
            UserRejected: If the account holder declined to sign
            RegistryWriteError: If submission failed
        """
        item_id = item_id or new_content_id()
        view_seed = self._rng.randrange(settings.VIEW_SEED_MAX)
        try:
            transaction = await self._contract.create_business_data(
                item_id,
                request.title,
                encrypted.handle,
                encrypted.proof,
                request.category.index,
                view_seed,
                request.description,
            )
        except Exception as e:
            logger.error("Content submission failed", item_id=item_id, error=str(e))
            raise _classify_write_error(e, item_id) from e

        logger.info("Content submitted", item_id=item_id, category=request.category.value)
        return SubmittedTransaction(item_id=item_id, transaction=transaction)

    async def submit_verification(
        self, item_id: str, abi_encoded_clear_values: str, decryption_proof: str
    ) -> SubmittedTransaction:
        try:
            transaction = await self._contract.verify_decryption(
                item_id, abi_encoded_clear_values, decryption_proof
            )
        except Exception as e:
            logger.warning("Verification submission failed", item_id=item_id, error=str(e))
            raise _classify_write_error(e, item_id) from e
        return SubmittedTransaction(item_id=item_id, transaction=transaction)

    async def is_available(self) -> bool:
        try:
            return bool(await self._contract.is_available())
        except Exception as e:
            raise RegistryReadError(f"Availability check failed: {e}") from e

    async def get_address(self) -> str:
        try:
            return await self._contract.get_address()
        except Exception as e:
            raise RegistryReadError(f"Failed to resolve registry address: {e}") from e
