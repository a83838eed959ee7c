"""EditRecord model: in-progress rating/comment for one item."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Literal, Optional

from reviewsync.utils.odata import normalize_rating


EditField = Literal["rating", "comment"]


class Permission(str, Enum):
    """Per-field permission granted to the current actor by the backend."""

    READ = "read"
    WRITE = "write"
    NONE = "none"


class Provenance(str, Enum):
    """Which role's entry an EditRecord's value came from."""

    SELF = "self"
    OFFICIAL = "official"
    OVERALL = "overall"
    OTHERS = "others"
    NA = "na"


class RaterFeedback(BaseModel):
    """Read-only rating/comment left by another rater."""

    user_id: Optional[str] = None
    full_name: Optional[str] = None
    category: Optional[str] = None
    rating: str = ""
    comment: str = ""

    model_config = {"frozen": True}


class EditRecord(BaseModel):
    """Current rating/comment for one item plus what is needed to write it back."""

    rating: str = Field(
        default="",
        description="Current rating as a float string, or empty when unset"
    )

    comment: str = Field(
        default="",
        description="Current comment text"
    )

    rating_key: Optional[str] = Field(
        default=None,
        description="Opaque backend key of the rating field"
    )

    comment_key: Optional[str] = Field(
        default=None,
        description="Opaque backend key of the comment field"
    )

    rating_permission: Permission = Field(default=Permission.NONE)
    comment_permission: Permission = Field(default=Permission.NONE)
    rating_provenance: Provenance = Field(default=Provenance.NA)

    author_user_id: str = Field(
        default="",
        description="userId of the rating entity (empty for official/overall entries)"
    )

    original_rating: str = Field(
        default="",
        description="Normalized rating as loaded, for change detection"
    )

    original_comment: str = Field(
        default="",
        description="Comment as loaded, for change detection"
    )

    source_rating: Optional[str] = Field(
        default=None,
        description="Raw rating value from the source document, used as write fallback"
    )

    self_rating: str = Field(default="", description="Subject's self rating, for reference")
    self_comment: str = Field(default="", description="Subject's self comment, for reference")
    others: list[RaterFeedback] = Field(default_factory=list)

    model_config = {"frozen": False}  # Allow mutation through EditStateStore

    def permission_for(self, field: EditField) -> Permission:
        if field == "rating":
            return self.rating_permission
        return self.comment_permission

    def is_writable(self, field: EditField) -> bool:
        return self.permission_for(field) is Permission.WRITE

    @property
    def rating_changed(self) -> bool:
        return self.is_writable("rating") and normalize_rating(self.rating) != self.original_rating

    @property
    def comment_changed(self) -> bool:
        return self.is_writable("comment") and self.comment != self.original_comment

    @property
    def is_dirty(self) -> bool:
        """True if any writable field differs from the value it was loaded with."""
        return self.rating_changed or self.comment_changed
