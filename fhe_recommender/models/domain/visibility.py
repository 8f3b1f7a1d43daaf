"""
Per-item score visibility and its transition table.

A content item's confidential score is in exactly one of three states:

    Unresolved            only the ciphertext exists for this client
    LocallyDecrypted(v)   cleartext recovered in memory, not yet on-chain
    OnChainVerified(v)    a decryption proof was accepted by the registry

OnChainVerified is terminal. ``apply_event`` is pure: it returns the next
state plus the effects the caller has to carry out, and never touches I/O.
"""

from dataclasses import dataclass
from enum import StrEnum


@dataclass(slots=True, frozen=True)
class Unresolved:
    pass


@dataclass(slots=True, frozen=True)
class LocallyDecrypted:
    value: int


@dataclass(slots=True, frozen=True)
class OnChainVerified:
    value: int


ScoreVisibility = Unresolved | LocallyDecrypted | OnChainVerified

UNRESOLVED = Unresolved()


@dataclass(slots=True, frozen=True)
class Decrypted:
    """The decryption gateway returned a clear value."""

    value: int


@dataclass(slots=True, frozen=True)
class Hidden:
    """The user hid the decrypted value or closed the item."""


@dataclass(slots=True, frozen=True)
class Reloaded:
    """A full catalog reload returned a fresh copy of the item."""

    is_verified: bool
    verified_score: int | None = None


@dataclass(slots=True, frozen=True)
class Refreshed:
    """Single-item refresh after a decrypt round trip; only ever upgrades."""

    is_verified: bool
    verified_score: int | None = None


@dataclass(slots=True, frozen=True)
class AlreadyVerifiedRace:
    """The gateway reported that someone verified the value mid-flight."""


VisibilityEvent = Decrypted | Hidden | Reloaded | Refreshed | AlreadyVerifiedRace


class Effect(StrEnum):
    REFRESH_REGISTRY = "refresh_registry"
    NOTIFY_ALREADY_VERIFIED = "notify_already_verified"
    DISCARD_LOCAL = "discard_local"


@dataclass(slots=True, frozen=True)
class Transition:
    state: ScoreVisibility
    effects: tuple[Effect, ...] = ()


def apply_event(state: ScoreVisibility, event: VisibilityEvent) -> Transition:
    """Compute the next visibility state for one event."""
    if isinstance(state, OnChainVerified):
        if isinstance(event, Decrypted | AlreadyVerifiedRace):
            return Transition(state, (Effect.NOTIFY_ALREADY_VERIFIED,))
        return Transition(state)

    match event:
        case Reloaded(is_verified=True, verified_score=score) | Refreshed(
            is_verified=True, verified_score=score
        ) if score is not None:
            effects = (Effect.DISCARD_LOCAL,) if isinstance(state, LocallyDecrypted) else ()
            return Transition(OnChainVerified(score), effects)
        case Refreshed():
            return Transition(state)
        case Reloaded():
            # Local cleartext does not survive a reload the registry has not verified.
            if isinstance(state, LocallyDecrypted):
                return Transition(UNRESOLVED, (Effect.DISCARD_LOCAL,))
            return Transition(state)
        case Decrypted(value=value):
            return Transition(LocallyDecrypted(value))
        case Hidden():
            if isinstance(state, LocallyDecrypted):
                return Transition(UNRESOLVED, (Effect.DISCARD_LOCAL,))
            return Transition(state)
        case AlreadyVerifiedRace():
            return Transition(
                state, (Effect.REFRESH_REGISTRY, Effect.NOTIFY_ALREADY_VERIFIED)
            )

    raise TypeError(f"Unknown visibility event: {event!r}")
