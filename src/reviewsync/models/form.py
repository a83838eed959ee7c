"""Form identity, user and backend result models."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Optional


class FormKind(str, Enum):
    """The two supported review document shapes."""

    PM = "pm"
    MULTI_RATER = "360"

    @property
    def root_entity(self) -> str:
        """Entity type of the deep-upsert root for this form kind."""
        if self is FormKind.PM:
            return "FormPMReviewContentDetail"
        return "Form360ReviewContentDetail"


class FormIdentity(BaseModel):
    """Identity of one open form; threaded unchanged through every entity key."""

    form_content_id: int = Field(..., description="FormContent key (Edm.Int64)")
    form_data_id: int = Field(..., description="FormData key (Edm.Int64)")

    model_config = {"frozen": True}


class CurrentUser(BaseModel):
    """The authenticated user as resolved through the app router and backend lookup."""

    user_id: str = Field(..., description="Backend userId used for rater attribution")
    display_name: Optional[str] = Field(default=None)
    email: Optional[str] = Field(default=None)
    username: Optional[str] = Field(default=None)

    model_config = {"frozen": True}


class FormSummary(BaseModel):
    """One form listed in a user's review folders."""

    folder_id: Optional[str] = None
    folder_name: Optional[str] = None
    form_content_id: int
    form_data_id: int
    title: str = ""
    current_step: Optional[str] = None
    last_modified: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def identity(self) -> FormIdentity:
        return FormIdentity(
            form_content_id=self.form_content_id,
            form_data_id=self.form_data_id,
        )


class RouteStep(BaseModel):
    """One step of a form's process route map (display only)."""

    step_name: str = Field(default="")
    current: bool = Field(default=False)
    completed: bool = Field(default=False)
    assignee_name: Optional[str] = Field(
        default=None,
        description="Processor full name or role, from the step or its first sub step"
    )

    model_config = {"frozen": True}

    @property
    def display_assignee(self) -> str:
        if self.assignee_name:
            return self.assignee_name
        return "Completed" if self.completed else "TBD"


class UpsertResult(BaseModel):
    """Per-entity status returned by the upsert transport."""

    key: Optional[str] = None
    status: str = ""
    edit_status: Optional[str] = None
    message: Optional[str] = None
    http_code: Optional[int] = None

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.status.upper() == "OK"

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "UpsertResult":
        return cls(
            key=data.get("key"),
            status=str(data.get("status") or ""),
            edit_status=data.get("editStatus"),
            message=data.get("message"),
            http_code=data.get("httpCode"),
        )
