"""
Error taxonomy shared by the gateways, the registry client, and the
orchestrator.

Every error carries a human-readable message and a ``recoverable`` flag.
None of them is fatal to the client: the orchestrator turns each one into
a timed status message and leaves state at its last-known-good value.
"""

ALREADY_VERIFIED_MARKER = "already verified"
USER_REJECTED_MARKER = "user rejected"


class RecommenderError(Exception):
    """Base exception for recommender client operations."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class SubsystemNotReady(RecommenderError):
    """Encrypt/decrypt attempted before the FHE runtime finished initializing."""

    pass


class WalletNotConnected(RecommenderError):
    """An action that needs an account was triggered without one."""

    def __init__(self, message: str = "Please connect wallet first"):
        super().__init__(message)


class EncryptionError(RecommenderError):
    """Plaintext could not be turned into a ciphertext/proof pair."""

    pass


class DecryptionError(RecommenderError):
    """Decryption or on-chain verification of a handle failed."""

    def __init__(self, message: str, item_id: str | None = None, recoverable: bool = True):
        super().__init__(message, recoverable=recoverable)
        self.item_id = item_id

    @property
    def already_verified(self) -> bool:
        """True when another party verified the value first."""
        return is_already_verified_message(self.message)


class RegistryReadError(RecommenderError):
    """Reading from the registry failed."""

    def __init__(self, message: str, item_id: str | None = None):
        super().__init__(message)
        self.item_id = item_id


class RegistryWriteError(RecommenderError):
    """A registry transaction was rejected or reverted."""

    def __init__(self, message: str, item_id: str | None = None):
        super().__init__(message)
        self.item_id = item_id


class UserRejected(RecommenderError):
    """The account holder declined to sign."""

    def __init__(self, message: str = "Transaction rejected by user"):
        super().__init__(message)


def is_already_verified_message(message: str | None) -> bool:
    return bool(message) and ALREADY_VERIFIED_MARKER in message.lower()


def is_user_rejection_message(message: str | None) -> bool:
    return bool(message) and USER_REJECTED_MARKER in message.lower()
