"""
Domain models for confidential content items.

ContentItem mirrors one registry record. The confidential interest score is
never part of it unless the registry reports that a decryption proof was
accepted for the item.
"""

import re
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SCORE_MIN = 0
SCORE_MAX = 100


class Category(StrEnum):
    """Closed set of content categories, stored on-chain by index."""

    AI = "AI"
    TECH = "Tech"
    CRYPTO = "Crypto"
    WEB3 = "Web3"
    SECURITY = "Security"
    PRIVACY = "Privacy"

    @property
    def index(self) -> int:
        return CATEGORY_ORDER.index(self)

    @classmethod
    def from_index(cls, value: int) -> "Category":
        """
        Look up a category by its on-chain index.

        Raises:
            ValueError: If the index is outside the known set
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Category index must be an integer, got {value!r}")
        if not 0 <= value < len(CATEGORY_ORDER):
            raise ValueError(f"Unknown category index {value}")
        return CATEGORY_ORDER[value]


CATEGORY_ORDER: tuple[Category, ...] = tuple(Category)


def new_content_id(now_ms: int | None = None) -> str:
    """Timestamp-derived content identifier, e.g. ``content-1717000000000``."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"content-{now_ms}"


class RegistryRecord(BaseModel):
    """Raw record returned by the registry's getBusinessData call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    public_value1: int = Field(alias="publicValue1", ge=0)
    public_value2: int = Field(alias="publicValue2", ge=0)
    description: str = ""
    creator: str
    timestamp: int = Field(ge=0)
    is_verified: bool = Field(alias="isVerified", default=False)
    decrypted_value: int = Field(alias="decryptedValue", default=0)


class ContentItem(BaseModel):
    """Content item as seen by this client; replaced wholesale on reload."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    category: Category
    description: str = ""
    creator: str
    created_at: int
    public_views: int = Field(default=0, ge=0)
    public_likes: int = Field(default=0, ge=0)
    is_verified: bool = False
    verified_score: int | None = Field(default=None, ge=SCORE_MIN, le=SCORE_MAX)

    @model_validator(mode="after")
    def _verified_score_matches_flag(self) -> "ContentItem":
        if self.is_verified and self.verified_score is None:
            raise ValueError("verified items must carry their verified score")
        if not self.is_verified and self.verified_score is not None:
            raise ValueError("verified score present on an unverified item")
        return self

    @classmethod
    def from_registry_record(cls, item_id: str, record: RegistryRecord) -> "ContentItem":
        """
        Map a registry record to a ContentItem.

        publicValue1 holds the category index and publicValue2 the view seed
        written at creation. The contract has no likes slot.
        """
        return cls(
            id=item_id,
            title=record.name,
            category=Category.from_index(record.public_value1),
            description=record.description,
            creator=record.creator,
            created_at=record.timestamp,
            public_views=record.public_value2,
            public_likes=0,
            is_verified=record.is_verified,
            verified_score=record.decrypted_value if record.is_verified else None,
        )


class CreateContentRequest(BaseModel):
    """Fields a user submits when publishing a content item."""

    title: str
    category: Category = Category.AI
    score: int = 0
    description: str = ""

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("score", mode="before")
    @classmethod
    def _digits_only(cls, value: Any) -> Any:
        # Form input arrives as text; anything but digits is discarded.
        if isinstance(value, str):
            digits = re.sub(r"[^\d]", "", value)
            return int(digits) if digits else 0
        return value

    @field_validator("score")
    @classmethod
    def _score_in_range(cls, value: int) -> int:
        if not SCORE_MIN <= value <= SCORE_MAX:
            raise ValueError(f"score must be between {SCORE_MIN} and {SCORE_MAX}")
        return value


@dataclass(slots=True, frozen=True)
class EncryptedInput:
    """Ciphertext handle plus input proof bound to a contract and account."""

    handle: str
    proof: str


@dataclass(slots=True, frozen=True)
class DecryptionResult:
    """Clear values keyed by the ciphertext handle they were decrypted from."""

    clear_values: dict[str, int]
    abi_encoded_clear_values: str = ""
    decryption_proof: str = ""
