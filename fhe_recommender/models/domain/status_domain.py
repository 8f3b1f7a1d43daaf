from typing import Literal

from pydantic import BaseModel, ConfigDict

StatusPhase = Literal["pending", "success", "error"]


class TransactionStatus(BaseModel):
    """User-facing feedback for the single in-flight action."""

    model_config = ConfigDict(frozen=True)

    phase: StatusPhase = "pending"
    message: str = ""
    visible: bool = False

    @property
    def self_clearing(self) -> bool:
        return self.phase in ("success", "error")


HIDDEN_STATUS = TransactionStatus()
