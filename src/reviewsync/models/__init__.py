"""Pydantic data models for Reviewsync."""

from reviewsync.models.edit_record import EditRecord, Permission, Provenance, RaterFeedback
from reviewsync.models.form import (
    CurrentUser,
    FormIdentity,
    FormKind,
    FormSummary,
    RouteStep,
    UpsertResult,
)
from reviewsync.models.section import Item, NormalizedForm, Section, SectionKind

__all__ = [
    "CurrentUser",
    "EditRecord",
    "FormIdentity",
    "FormKind",
    "FormSummary",
    "Item",
    "NormalizedForm",
    "Permission",
    "Provenance",
    "RaterFeedback",
    "RouteStep",
    "Section",
    "SectionKind",
    "UpsertResult",
]
