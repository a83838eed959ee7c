"""Normalized section/item model for review forms."""

from datetime import date
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Literal, Optional, Union

from reviewsync.models.edit_record import EditRecord
from reviewsync.models.form import FormKind
from reviewsync.utils.odata import RATING_SCALE_MAX, format_rating, percent_of_max


class SectionKind(str, Enum):
    """Section variants a review form is normalized into."""

    INTRODUCTION = "introduction"
    USER_INFO = "user_info"
    OBJECTIVES = "objectives"
    COMPETENCIES = "competencies"
    CUSTOM = "custom"
    SUMMARY = "summary"
    RATER_ROSTER = "rater_roster"
    RATER_SUMMARY_VIEW = "rater_summary_view"


READ_ONLY_KINDS = frozenset({
    SectionKind.INTRODUCTION,
    SectionKind.USER_INFO,
    SectionKind.RATER_ROSTER,
    SectionKind.RATER_SUMMARY_VIEW,
})

SectionOrigin = Literal["objectiveSections", "competencySections", "customSections", "summarySection"]


class IntroductionPayload(BaseModel):
    """Introduction block: rich-text description."""

    kind: Literal["introduction"] = "introduction"
    description_html: str = ""
    description_text: str = ""

    model_config = {"frozen": True}


class UserInfoPayload(BaseModel):
    """Read-only projection of the review subject's attributes."""

    kind: Literal["user_info"] = "user_info"
    user_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    title: Optional[str] = None
    department: Optional[str] = None
    hire_date: Optional[date] = None

    model_config = {"frozen": True}


class RaterParticipant(BaseModel):
    """One participant of a 360 review and their completion status."""

    user_id: Optional[str] = None
    full_name: str = ""
    category: Optional[str] = None
    status: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def completed(self) -> bool:
        return (self.status or "").lower() == "completed"


class RaterRosterPayload(BaseModel):
    kind: Literal["rater_roster"] = "rater_roster"
    participants: list[RaterParticipant] = Field(default_factory=list)

    model_config = {"frozen": True}


class RaterCategoryScore(BaseModel):
    """Average rating of one rater category on the fixed 5.0 scale."""

    category: str = ""
    rating: float = 0.0
    scale_max: float = float(RATING_SCALE_MAX)

    model_config = {"frozen": True}

    @property
    def percent_of_max(self) -> int:
        return percent_of_max(self.rating)

    @property
    def percent_label(self) -> str:
        return f"{self.percent_of_max}%"

    @property
    def display_rating(self) -> str:
        return format_rating(self.rating)


class RaterSummaryPayload(BaseModel):
    kind: Literal["rater_summary_view"] = "rater_summary_view"
    scores: list[RaterCategoryScore] = Field(default_factory=list)

    model_config = {"frozen": True}


SectionPayload = Union[
    IntroductionPayload,
    UserInfoPayload,
    RaterRosterPayload,
    RaterSummaryPayload,
]


class Item(BaseModel):
    """A rateable unit inside an objectives, competencies or custom section."""

    item_id: str = Field(
        ...,
        description="Local item id: the backend itemId, or the positional index when absent"
    )

    backend_item_id: Optional[str] = Field(
        default=None,
        description="Backend itemId; None when the source did not key the item"
    )

    key: str = Field(..., description="EditState key ({section_id}_{item_id})")
    name: str = Field(default="")
    description: Optional[str] = Field(default=None)
    weight: Optional[float] = Field(default=None)
    source_ref: Any = Field(default=None, description="Raw item entity", repr=False)

    model_config = {"frozen": True}


class Section(BaseModel):
    """A titled group of rateable or informational content."""

    id: str = Field(
        ...,
        description="Local synthetic id derived from kind + position (e.g. obj_0)"
    )

    kind: SectionKind = Field(...)
    title: str = Field(default="")

    backend_section_index: Optional[int] = Field(
        default=None,
        description="sectionIndex assigned by the backend document; distinct from id"
    )

    origin: Optional[SectionOrigin] = Field(
        default=None,
        description="Backend collection the section was read from"
    )

    attribute_type: Optional[str] = Field(
        default=None,
        description="Custom section attributeType (SKILL, STRENGTH, DEVELOPMENT, ...)"
    )

    weight: Optional[float] = Field(default=None)
    items: list[Item] = Field(default_factory=list)

    edit_key: Optional[str] = Field(
        default=None,
        description="EditState key for sections edited as a whole (summary, free-text custom)"
    )

    payload: Optional[SectionPayload] = Field(default=None)
    source_ref: Any = Field(default=None, description="Raw section entity", repr=False)

    model_config = {"frozen": True}

    @property
    def editable(self) -> bool:
        return self.kind not in READ_ONLY_KINDS

    @property
    def edit_keys(self) -> list[str]:
        """All EditState keys that belong to this section."""
        if self.edit_key is not None:
            return [self.edit_key]
        return [item.key for item in self.items]


class NormalizedForm(BaseModel):
    """Immutable normalized snapshot of one fetched form."""

    kind: FormKind
    title: str = ""
    subject_user_id: Optional[str] = None
    sections: list[Section] = Field(default_factory=list)
    initial_edits: dict[str, EditRecord] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def section(self, section_id: str) -> Optional[Section]:
        return next((s for s in self.sections if s.id == section_id), None)

    def sections_of(self, kind: SectionKind) -> list[Section]:
        return [s for s in self.sections if s.kind is kind]
