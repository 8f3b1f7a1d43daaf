"""
Session orchestrator.

Sequences FHE subsystem initialization relative to wallet connection, loads
the catalog, and funnels every user-triggered async action (create, decrypt,
availability check) through the single-slot status channel.

Everything runs on one event loop. The only shared-mutation hazards are
stale results arriving after the user moved on, which are guarded by a load
generation counter and by checking the currently open item's identity.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from fhe_recommender.errors import RecommenderError, RegistryReadError, UserRejected
from fhe_recommender.infrastructure.observability.logging import get_logger
from fhe_recommender.models.domain.content_domain import ContentItem, CreateContentRequest
from fhe_recommender.models.domain.visibility import ScoreVisibility
from fhe_recommender.repositories.content_registry import ContentRegistryClient
from fhe_recommender.services.catalog_service import CatalogSummary, summarize_catalog
from fhe_recommender.services.infrastructure.encryption_gateway import EncryptionGateway
from fhe_recommender.services.infrastructure.relayer_client import FheRuntime
from fhe_recommender.services.lifecycle_service import (
    DecryptOutcome,
    DecryptOutcomeKind,
    LifecycleService,
)
from fhe_recommender.services.scoring import RecommendationStats, ScoringService, scoring_service
from fhe_recommender.services.status_channel import StatusChannel

logger = get_logger(__name__)

MSG_WALLET_REQUIRED = "Please connect wallet first"
MSG_INIT_FAILED = "FHEVM initialization failed"
MSG_LOAD_FAILED = "Failed to load data"
MSG_CREATING = "Creating content with FHE encryption..."
MSG_CONFIRMING = "Waiting for transaction confirmation..."
MSG_CREATED = "Content created successfully!"
MSG_REJECTED = "Transaction rejected by user"
MSG_VERIFYING = "Verifying decryption on-chain..."
MSG_ALREADY_VERIFIED = "Data already verified on-chain"
MSG_VERIFIED_BY_RACE = "Data is already verified on-chain"
MSG_DECRYPTED = "Interest score decrypted successfully!"
MSG_AVAILABLE = "System is available and ready!"
MSG_AVAILABILITY_FAILED = "Availability check failed"


@dataclass(slots=True, frozen=True)
class SessionSnapshot:
    wallet_connected: bool
    account_address: str | None
    fhe_initialized: bool
    initializing: bool
    content_loaded: bool
    loading: bool
    creating: bool
    decrypting: bool
    open_item_id: str | None

    @property
    def ready(self) -> bool:
        """Wallet connected and FHE subsystem usable."""
        return self.wallet_connected and self.fhe_initialized


class SessionOrchestrator:
    def __init__(
        self,
        runtime: FheRuntime,
        registry: ContentRegistryClient,
        lifecycle: LifecycleService,
        encryption_gateway: EncryptionGateway,
        status: StatusChannel | None = None,
        scoring: ScoringService | None = None,
    ):
        self._runtime = runtime
        self._registry = registry
        self.lifecycle = lifecycle
        self._encryption = encryption_gateway
        self.status = status or StatusChannel()
        self._scoring = scoring or scoring_service

        self._wallet_connected = False
        self._account_address: str | None = None
        self._content_loaded = False
        self._loading = False
        self._creating = False
        self._decrypts_in_flight = 0
        self._load_generation = 0
        self._init_task: asyncio.Task | None = None
        self._open_item_id: str | None = None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            wallet_connected=self._wallet_connected,
            account_address=self._account_address,
            fhe_initialized=self._runtime.is_initialized,
            initializing=self.initializing,
            content_loaded=self._content_loaded,
            loading=self._loading,
            creating=self._creating,
            decrypting=self._decrypts_in_flight > 0,
            open_item_id=self._open_item_id,
        )

    @property
    def initializing(self) -> bool:
        return self._init_task is not None and not self._init_task.done()

    # ------------------------------------------------------------------
    # Wallet / initialization / loading
    # ------------------------------------------------------------------

    async def on_wallet_changed(self, connected: bool, account_address: str | None = None) -> None:
        """React to the wallet connecting or disconnecting."""
        self._wallet_connected = connected
        self._account_address = account_address if connected else None

        if not connected:
            # Abandon any in-flight load; its result is discarded on arrival.
            self._load_generation += 1
            self._loading = False
            self._content_loaded = False
            self.close_item()
            logger.info("Wallet disconnected")
            return

        logger.info("Wallet connected", account_address=account_address)
        await asyncio.gather(self.ensure_initialized(), self.load_content())

    async def ensure_initialized(self) -> bool:
        """
        Initialize the FHE subsystem once.

        Concurrent callers share the in-flight attempt. Failure leaves the
        subsystem uninitialized so a later call can retry.
        """
        if self._runtime.is_initialized:
            return True
        if not self._wallet_connected:
            return False
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        return await self._init_task

    async def _initialize(self) -> bool:
        try:
            await self._runtime.initialize()
            return True
        except RecommenderError as e:
            logger.error("FHE subsystem initialization failed", error=e.message)
            self.status.error(MSG_INIT_FAILED)
            return False
        finally:
            self._init_task = None

    async def load_content(self) -> list[ContentItem]:
        """Reload the catalog; skipped while the wallet is disconnected."""
        if not self._wallet_connected:
            self._loading = False
            return []

        self._load_generation += 1
        generation = self._load_generation
        self._loading = True
        try:
            items = await self._registry.list_all()
        except RegistryReadError as e:
            if generation == self._load_generation:
                logger.error("Content load failed", error=e.message)
                self.status.error(MSG_LOAD_FAILED)
            return []
        finally:
            if generation == self._load_generation:
                self._loading = False

        if generation != self._load_generation or not self._wallet_connected:
            logger.info("Discarding stale content load", generation=generation)
            return []

        self.lifecycle.apply_reload(items)
        self._content_loaded = True

        try:
            await self.lifecycle.resolve_contract_address()
        except RegistryReadError as e:
            logger.error("Failed to resolve registry address", error=e.message)

        return items

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_content(
        self, request: CreateContentRequest | Mapping[str, Any]
    ) -> ContentItem | None:
        """
        Encrypt the score, submit the item, wait for finality, then reload.

        Returns the created item once it is visible in the reloaded catalog.
        """
        if not self._wallet_connected or not self._account_address:
            self.status.error(MSG_WALLET_REQUIRED)
            return None

        if not isinstance(request, CreateContentRequest):
            try:
                request = CreateContentRequest.model_validate(dict(request))
            except ValidationError as e:
                first = e.errors()[0]["msg"] if e.errors() else str(e)
                self.status.error(f"Submission failed: {first}")
                return None

        self._creating = True
        self.status.pending(MSG_CREATING)
        try:
            contract_address = await self.lifecycle.resolve_contract_address()
            encrypted = await self._encryption.encrypt(
                contract_address, self._account_address, request.score
            )
            submitted = await self._registry.create(request, encrypted)
            self.status.pending(MSG_CONFIRMING)
            await submitted.wait()
        except UserRejected:
            self.status.error(MSG_REJECTED)
            return None
        except RecommenderError as e:
            logger.error("Content creation failed", error=e.message, error_type=type(e).__name__)
            self.status.error(f"Submission failed: {e.message or 'Unknown error'}")
            return None
        except Exception as e:
            logger.error("Content creation failed", error=str(e), error_type=type(e).__name__)
            self.status.error(f"Submission failed: {str(e) or 'Unknown error'}")
            return None
        finally:
            self._creating = False

        self.status.success(MSG_CREATED)
        logger.info("Content created", item_id=submitted.item_id)
        await self.load_content()
        return self.lifecycle.item(submitted.item_id)

    # ------------------------------------------------------------------
    # Detail view / decrypt
    # ------------------------------------------------------------------

    def open_item(self, item_id: str) -> ContentItem | None:
        if self._open_item_id and self._open_item_id != item_id:
            self.close_item()
        self._open_item_id = item_id
        return self.lifecycle.item(item_id)

    def close_item(self) -> None:
        """Close the detail view and drop its locally decrypted value."""
        if self._open_item_id is not None:
            self.lifecycle.reset(self._open_item_id)
        self._open_item_id = None

    @property
    def open_item_id(self) -> str | None:
        return self._open_item_id

    @property
    def open_item_state(self) -> ScoreVisibility | None:
        if self._open_item_id is None:
            return None
        return self.lifecycle.visibility(self._open_item_id)

    def hide_decrypted(self, item_id: str) -> None:
        self.lifecycle.reset(item_id)

    async def decrypt_open_item(self) -> DecryptOutcome | None:
        if self._open_item_id is None:
            return None
        return await self.decrypt(self._open_item_id)

    async def decrypt(self, item_id: str) -> DecryptOutcome | None:
        """Decrypt and verify an item's score, reporting progress on the status channel."""
        if not self._wallet_connected or not self._account_address:
            self.status.error(MSG_WALLET_REQUIRED)
            return None

        was_open = self._open_item_id == item_id

        def _still_relevant() -> bool:
            return not was_open or self._open_item_id == item_id

        self._decrypts_in_flight += 1
        self.status.pending(MSG_VERIFYING)
        try:
            outcome = await self.lifecycle.decrypt(item_id, still_relevant=_still_relevant)
        except UserRejected:
            self.status.error(MSG_REJECTED)
            return None
        except RecommenderError as e:
            self.status.error(f"Decryption failed: {e.message or 'Unknown error'}")
            return None
        finally:
            self._decrypts_in_flight -= 1

        if outcome.kind is DecryptOutcomeKind.ALREADY_VERIFIED:
            self.status.success(MSG_ALREADY_VERIFIED)
        elif outcome.kind is DecryptOutcomeKind.VERIFIED_BY_RACE:
            self.status.success(MSG_VERIFIED_BY_RACE)
        else:
            self.status.success(MSG_DECRYPTED)
        return outcome

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------

    async def check_availability(self) -> bool:
        try:
            available = await self._registry.is_available()
        except RecommenderError as e:
            logger.warning("Availability check failed", error=e.message)
            self.status.error(MSG_AVAILABILITY_FAILED)
            return False

        if available:
            self.status.success(MSG_AVAILABLE)
        else:
            self.status.error(MSG_AVAILABILITY_FAILED)
        return available

    def stats_for(self, item_id: str, now: float | None = None) -> RecommendationStats | None:
        item = self.lifecycle.item(item_id)
        if item is None:
            return None
        return self._scoring.score(item, self.lifecycle.local_value(item_id), now)

    def catalog_summary(self, now: float | None = None) -> CatalogSummary:
        return summarize_catalog(self.lifecycle.items, now)
