"""
Encrypted-value lifecycle manager.

Tracks, per content item, whether its confidential score is Unresolved,
LocallyDecrypted, or OnChainVerified, and drives the decrypt/verify round
trip through the decryption gateway and the registry.

On-chain state always wins over the local cache. The local cache is
memory-only and single-user; it is lost on reload unless the value was
verified on-chain.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum

from fhe_recommender.errors import (
    DecryptionError,
    RecommenderError,
    SubsystemNotReady,
    UserRejected,
    is_already_verified_message,
)
from fhe_recommender.infrastructure.observability.logging import get_logger
from fhe_recommender.models.domain.content_domain import ContentItem
from fhe_recommender.models.domain.visibility import (
    UNRESOLVED,
    AlreadyVerifiedRace,
    Decrypted,
    Effect,
    Hidden,
    LocallyDecrypted,
    OnChainVerified,
    Refreshed,
    Reloaded,
    ScoreVisibility,
    Transition,
    Unresolved,
    VisibilityEvent,
    apply_event,
)
from fhe_recommender.repositories.content_registry import ContentRegistryClient
from fhe_recommender.services.infrastructure.decryption_gateway import (
    DecryptionGateway,
    ProofContinuation,
)

logger = get_logger(__name__)


class DecryptOutcomeKind(StrEnum):
    DECRYPTED = "decrypted"
    ALREADY_VERIFIED = "already_verified"
    VERIFIED_BY_RACE = "verified_by_race"


@dataclass(slots=True, frozen=True)
class DecryptOutcome:
    item_id: str
    value: int | None
    kind: DecryptOutcomeKind

    @property
    def informational(self) -> bool:
        """True when no new cleartext was produced by this call."""
        return self.kind is not DecryptOutcomeKind.DECRYPTED


class LifecycleService:
    def __init__(
        self,
        registry: ContentRegistryClient,
        decryption_gateway: DecryptionGateway,
        contract_address: str = "",
    ):
        self._registry = registry
        self._gateway = decryption_gateway
        self.contract_address = contract_address
        self._items: dict[str, ContentItem] = {}
        self._states: dict[str, ScoreVisibility] = {}

    @property
    def items(self) -> list[ContentItem]:
        return list(self._items.values())

    def item(self, item_id: str) -> ContentItem | None:
        return self._items.get(item_id)

    def resolve_visibility(self, item: ContentItem) -> ScoreVisibility:
        """
        Current score visibility for an item.

        The item's on-chain verification flag is read first and wins
        unconditionally; otherwise the local cache decides.
        """
        if item.is_verified and item.verified_score is not None:
            return OnChainVerified(item.verified_score)
        state = self._states.get(item.id, UNRESOLVED)
        if isinstance(state, LocallyDecrypted | OnChainVerified):
            return state
        return UNRESOLVED

    def visibility(self, item_id: str) -> ScoreVisibility:
        item = self._items.get(item_id)
        if item is None:
            return self._states.get(item_id, UNRESOLVED)
        return self.resolve_visibility(item)

    def local_value(self, item_id: str) -> int | None:
        """Locally decrypted value held for an item, if any."""
        state = self._states.get(item_id)
        if isinstance(state, LocallyDecrypted):
            return state.value
        return None

    def _apply(self, item_id: str, event: VisibilityEvent) -> Transition:
        current = self._states.get(item_id, UNRESOLVED)
        transition = apply_event(current, event)
        if Effect.DISCARD_LOCAL in transition.effects:
            self._states.pop(item_id, None)
        if not isinstance(transition.state, Unresolved):
            self._states[item_id] = transition.state
        if transition.state != current:
            logger.debug(
                "Score visibility changed",
                item_id=item_id,
                from_state=type(current).__name__,
                to_state=type(transition.state).__name__,
                effects=[effect.value for effect in transition.effects],
            )
        return transition

    def apply_reload(self, items: Iterable[ContentItem]) -> None:
        """Replace the item cache wholesale after a full registry listing."""
        fresh = {item.id: item for item in items}
        for item_id in list(self._states):
            if item_id not in fresh:
                self._apply(item_id, Reloaded(is_verified=False))
        for item in fresh.values():
            self._apply(item.id, Reloaded(item.is_verified, item.verified_score))
        self._items = fresh

    async def refresh(self, item_id: str) -> ContentItem | None:
        """
        Reload one item after a state-changing round trip.

        A failed refresh keeps the last-known state.
        """
        try:
            item = await self._registry.get(item_id)
        except RecommenderError as e:
            logger.warning("Item refresh failed", item_id=item_id, error=str(e))
            return None
        self._items[item_id] = item
        self._apply(item_id, Refreshed(item.is_verified, item.verified_score))
        return item

    def reset(self, item_id: str) -> None:
        """Forget the locally decrypted value; verified items are unaffected."""
        self._apply(item_id, Hidden())

    async def resolve_contract_address(self) -> str:
        if not self.contract_address:
            self.contract_address = await self._registry.get_address()
        return self.contract_address

    async def decrypt(
        self, item_id: str, still_relevant: Callable[[], bool] | None = None
    ) -> DecryptOutcome:
        """
        Decrypt an item's score, submitting the decryption proof on-chain.

        Args:
            item_id: Content item to decrypt
            still_relevant: Checked once the gateway returns; when it reports
                False the cleartext is not kept in the local cache

        Returns:
            DecryptOutcome with the cleartext; value is None when the gateway
            reported that another party verified the score mid-flight

        Raises:
            SubsystemNotReady: If the FHE runtime is not initialized
            UserRejected: If the verification transaction was declined
            DecryptionError: On any other failure; no state is committed
        """
        try:
            item = await self._registry.get(item_id)
        except RecommenderError as e:
            raise DecryptionError(e.message, item_id=item_id) from e
        self._items[item_id] = item

        if item.is_verified and item.verified_score is not None:
            self._apply(item_id, Refreshed(True, item.verified_score))
            logger.info("Decrypt skipped, score already verified", item_id=item_id)
            return DecryptOutcome(item_id, item.verified_score, DecryptOutcomeKind.ALREADY_VERIFIED)

        try:
            handle = await self._registry.get_ciphertext_handle(item_id)
            contract_address = await self.resolve_contract_address()
        except RecommenderError as e:
            raise DecryptionError(e.message, item_id=item_id) from e

        async def _submit_proof(abi_encoded_clear_values: str, decryption_proof: str):
            submitted = await self._registry.submit_verification(
                item_id, abi_encoded_clear_values, decryption_proof
            )
            return await submitted.wait()

        try:
            result = await self._gateway.verify_decryption(
                [handle], contract_address, ProofContinuation(_submit_proof)
            )
        except (SubsystemNotReady, UserRejected):
            raise
        except Exception as e:
            message = e.message if isinstance(e, RecommenderError) else str(e)
            if is_already_verified_message(message):
                transition = self._apply(item_id, AlreadyVerifiedRace())
                await self._carry_out(item_id, transition)
                logger.info("Score verified by another party mid-flight", item_id=item_id)
                return DecryptOutcome(item_id, None, DecryptOutcomeKind.VERIFIED_BY_RACE)
            logger.warning(
                "Decryption failed",
                item_id=item_id,
                error=message,
                error_type=type(e).__name__,
            )
            raise DecryptionError(message or "Unknown error", item_id=item_id) from e

        value = int(result.clear_values[handle])
        kind = DecryptOutcomeKind.DECRYPTED
        if still_relevant is None or still_relevant():
            transition = self._apply(item_id, Decrypted(value))
            if Effect.NOTIFY_ALREADY_VERIFIED in transition.effects:
                kind = DecryptOutcomeKind.VERIFIED_BY_RACE
        await self.refresh(item_id)

        logger.info("Score decrypted", item_id=item_id, outcome=kind.value)
        return DecryptOutcome(item_id, value, kind)

    async def _carry_out(self, item_id: str, transition: Transition) -> None:
        if Effect.REFRESH_REGISTRY in transition.effects:
            await self.refresh(item_id)
