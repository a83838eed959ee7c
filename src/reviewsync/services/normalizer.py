"""Normalize raw PM and 360 review documents into sections and edit records.

Both raw shapes are walked by the same pipeline; they differ only in which
sub-structures are present and in where an item's editable rating comes from:

- PM: the official reviewer entry when writable, otherwise the subject's
  self entry as a read-only reference, otherwise the official entry
  read-only. A missing permission means none.
- 360: the self entry, otherwise the actor's entry among the other raters.
  A non-empty rating or comment key implies write when no permission is
  stated.

Every emitted section gets a deterministic local id (``obj_0``, ``comp_1``,
...) that is kept apart from the backend ``sectionIndex``.
"""

from typing import Any, Optional

from reviewsync.models.edit_record import EditRecord, Permission, Provenance, RaterFeedback
from reviewsync.models.form import FormKind
from reviewsync.models.section import (
    IntroductionPayload,
    Item,
    NormalizedForm,
    RaterCategoryScore,
    RaterParticipant,
    RaterRosterPayload,
    RaterSummaryPayload,
    Section,
    SectionKind,
    UserInfoPayload,
)
from reviewsync.utils.logging import get_logger
from reviewsync.utils.odata import (
    clean_html,
    is_rating_value,
    normalize_rating,
    parse_odata_date,
    results,
)


logger = get_logger(__name__)

SUMMARY_KEY = "summary"
SKILL = "SKILL"

SELF_ENTRY = "selfRatingComment"
OFFICIAL_ENTRY = "officialRating"
OVERALL_ENTRY = "overallFormRating"
OTHERS_ENTRY = "othersRatingComment"


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value: Any) -> Optional[float]:
    if not is_rating_value(value):
        return None
    return float(value)


def _permission(
    entry: dict[str, Any],
    permission_field: str,
    key_field: str,
    infer_from_key: bool = False,
) -> Permission:
    """Explicit permission wins; with ``infer_from_key`` a non-empty key alone signals write."""
    value = entry.get(permission_field)
    if value in (p.value for p in Permission):
        return Permission(value)
    if infer_from_key and entry.get(key_field):
        return Permission.WRITE
    return Permission.NONE


def _is_writable(entry: Optional[dict[str, Any]], infer_from_key: bool = False) -> bool:
    if not entry:
        return False
    return (
        _permission(entry, "ratingPermission", "ratingKey", infer_from_key) is Permission.WRITE
        or _permission(entry, "commentPermission", "commentKey", infer_from_key) is Permission.WRITE
    )


def _entry(holder: dict[str, Any], name: str) -> Optional[dict[str, Any]]:
    value = holder.get(name)
    if isinstance(value, dict) and value:
        if "results" in value:
            entries = results(value)
            return entries[0] if entries else None
        return value
    return None


class FormSchemaNormalizer:
    """
    Convert a raw review document into ordered sections and initial edits.

    Missing sub-structures (including whole detail reads that failed) are
    treated as absent, never as errors.

    Example:
        >>> normalizer = FormSchemaNormalizer()
        >>> form = normalizer.normalize(raw, FormKind.PM, actor_user_id="mgr01")
        >>> [s.id for s in form.sections]
        ['intro', 'obj_0', 'comp_0', 'summary']
    """

    def normalize(
        self,
        raw_document: dict[str, Any],
        form_kind: FormKind,
        actor_user_id: Optional[str] = None,
    ) -> NormalizedForm:
        """
        Normalize one raw document.

        Args:
            raw_document: Raw form document (PM or 360 shape)
            form_kind: Which shape the document has
            actor_user_id: userId of the current actor, used to find their 360 entries

        Returns:
            NormalizedForm with sections in display order and one EditRecord per edit key
        """
        raw_document = raw_document or {}
        content = self._content_root(raw_document, form_kind)
        header = raw_document.get("formHeader") or {}
        subject_user_id = (
            header.get("formSubjectId")
            or raw_document.get("subjectUserId")
            or content.get("subjectUserId")
        )

        walker = _Walker(form_kind, actor_user_id, subject_user_id)
        sections: list[Section] = []

        sections.extend(walker.introduction(content))
        sections.extend(walker.user_info(content, raw_document))
        sections.extend(walker.objectives(content))

        custom_sections = results(content.get("customSections"))
        skills = [sec for sec in custom_sections if sec.get("attributeType") == SKILL]
        remaining = [sec for sec in custom_sections if sec.get("attributeType") != SKILL]

        sections.extend(walker.competencies(content, skills))
        sections.extend(walker.custom(remaining))
        sections.extend(walker.summary(content))

        if form_kind is FormKind.MULTI_RATER:
            sections.extend(walker.rater_roster(content))
            sections.extend(walker.rater_summary_view(content))

        title = (
            header.get("formTitle")
            or raw_document.get("formTitle")
            or content.get("formTitle")
            or ""
        )

        logger.info(
            "form_normalized",
            kind=form_kind.value,
            sections=len(sections),
            edit_records=len(walker.edits),
            writable=sum(1 for r in walker.edits.values() if r.is_writable("rating") or r.is_writable("comment")),
        )

        return NormalizedForm(
            kind=form_kind,
            title=title,
            subject_user_id=subject_user_id,
            sections=sections,
            initial_edits=walker.edits,
        )

    @staticmethod
    def _content_root(raw_document: dict[str, Any], form_kind: FormKind) -> dict[str, Any]:
        if form_kind is FormKind.PM:
            details = results(raw_document.get("pmReviewContentDetail"))
            if details:
                return details[0]
            if "objectiveSections" in raw_document or "competencySections" in raw_document:
                return raw_document
            return {}
        return raw_document


class _Walker:
    """Per-document state: actor identity and the EditRecords collected so far."""

    def __init__(self, form_kind: FormKind, actor_user_id: Optional[str], subject_user_id: Optional[str]):
        self.form_kind = form_kind
        self.actor_user_id = actor_user_id
        self.subject_user_id = subject_user_id
        self.edits: dict[str, EditRecord] = {}
        self.infer_from_key = form_kind is FormKind.MULTI_RATER

    # Read-only sections

    def introduction(self, content: dict[str, Any]) -> list[Section]:
        intro = content.get("introductionSection")
        if not intro:
            return []
        html = intro.get("sectionDescription") or ""
        return [Section(
            id="intro",
            kind=SectionKind.INTRODUCTION,
            title=intro.get("sectionName") or "Introduction",
            backend_section_index=_optional_int(intro.get("sectionIndex")),
            payload=IntroductionPayload(description_html=html, description_text=clean_html(html)),
            source_ref=intro,
        )]

    def user_info(self, content: dict[str, Any], raw_document: dict[str, Any]) -> list[Section]:
        info = content.get("userInformationSection") or raw_document.get("userInformationSection")
        if not info:
            return []
        subject = content.get("subjectUser") or raw_document.get("subjectUser") or info.get("subjectUser") or {}
        return [Section(
            id="user_info",
            kind=SectionKind.USER_INFO,
            title=info.get("sectionName") or "Employee Information",
            backend_section_index=_optional_int(info.get("sectionIndex")),
            payload=UserInfoPayload(
                user_id=subject.get("userId") or self.subject_user_id,
                first_name=subject.get("firstName"),
                last_name=subject.get("lastName"),
                title=subject.get("title"),
                department=subject.get("department"),
                hire_date=parse_odata_date(subject.get("hireDate")),
            ),
            source_ref=info,
        )]

    def rater_roster(self, content: dict[str, Any]) -> list[Section]:
        roster = content.get("form360RaterSection")
        if not roster:
            return []
        participants = [
            RaterParticipant(
                user_id=rater.get("participantID") or rater.get("userId"),
                full_name=rater.get("participantFullName") or rater.get("fullName") or "",
                category=rater.get("category"),
                status=rater.get("status"),
            )
            for rater in results(roster.get("form360Raters"))
        ]
        return [Section(
            id="raters",
            kind=SectionKind.RATER_ROSTER,
            title=roster.get("sectionName") or "Rater List",
            backend_section_index=_optional_int(roster.get("sectionIndex")),
            payload=RaterRosterPayload(participants=participants),
            source_ref=roster,
        )]

    def rater_summary_view(self, content: dict[str, Any]) -> list[Section]:
        view = content.get("summaryViewSection")
        if not view:
            return []
        scores = [
            RaterCategoryScore(
                category=rater.get("raterCategory") or "",
                rating=_optional_float(rater.get("rating")) or 0.0,
            )
            for rater in results(view.get("formRaters"))
        ]
        return [Section(
            id="summary_view",
            kind=SectionKind.RATER_SUMMARY_VIEW,
            title=view.get("sectionName") or "Result Summary",
            backend_section_index=_optional_int(view.get("sectionIndex")),
            payload=RaterSummaryPayload(scores=scores),
            source_ref=view,
        )]

    # Editable sections

    def objectives(self, content: dict[str, Any]) -> list[Section]:
        sections = []
        for index, raw_section in enumerate(results(content.get("objectiveSections"))):
            section_id = f"obj_{index}"
            items = self._items(
                section_id,
                results(raw_section.get("objectives")),
                positional_fallback=True,
            )
            sections.append(self._section(
                section_id, SectionKind.OBJECTIVES, raw_section, items,
                origin="objectiveSections", default_title="Objectives",
            ))
        return sections

    def competencies(self, content: dict[str, Any], skills: list[dict[str, Any]]) -> list[Section]:
        merged = [(sec, "competencySections", "competencies") for sec in results(content.get("competencySections"))]
        # SKILL custom sections are edited as competencies but written back as custom sections.
        merged += [(sec, "customSections", "customItems") for sec in skills]

        sections = []
        for index, (raw_section, origin, items_field) in enumerate(merged):
            section_id = f"comp_{index}"
            items = self._items(section_id, results(raw_section.get(items_field)))
            sections.append(self._section(
                section_id, SectionKind.COMPETENCIES, raw_section, items,
                origin=origin, default_title="Competencies",
            ))
        return sections

    def custom(self, custom_sections: list[dict[str, Any]]) -> list[Section]:
        sections = []
        for index, raw_section in enumerate(custom_sections):
            section_id = f"custom_{index}"
            items = self._items(section_id, results(raw_section.get("customItems")))
            edit_key = None
            if not items:
                edit_key = section_id
                self.edits[section_id] = self._resolve(raw_section)
            sections.append(self._section(
                section_id, SectionKind.CUSTOM, raw_section, items,
                origin="customSections", default_title="", edit_key=edit_key,
            ))
        return sections

    def summary(self, content: dict[str, Any]) -> list[Section]:
        raw_summary = content.get("summarySection")
        if not raw_summary:
            return []
        self.edits[SUMMARY_KEY] = self._resolve_summary(raw_summary)
        default_title = "Overall Average Rating" if self.form_kind is FormKind.MULTI_RATER else "Overall Result"
        return [self._section(
            SUMMARY_KEY, SectionKind.SUMMARY, raw_summary, [],
            origin="summarySection", default_title=default_title, edit_key=SUMMARY_KEY,
        )]

    def _section(
        self,
        section_id: str,
        kind: SectionKind,
        raw_section: dict[str, Any],
        items: list[Item],
        origin: str,
        default_title: str,
        edit_key: Optional[str] = None,
    ) -> Section:
        return Section(
            id=section_id,
            kind=kind,
            title=raw_section.get("sectionName") or default_title,
            backend_section_index=_optional_int(raw_section.get("sectionIndex")),
            origin=origin,
            attribute_type=raw_section.get("attributeType"),
            weight=_optional_float(raw_section.get("sectionWeight")),
            items=items,
            edit_key=edit_key,
            source_ref=raw_section,
        )

    def _items(
        self,
        section_id: str,
        raw_items: list[dict[str, Any]],
        positional_fallback: bool = False,
    ) -> list[Item]:
        items = []
        for position, raw_item in enumerate(raw_items):
            backend_id = raw_item.get("itemId")
            backend_id = None if backend_id in (None, "") else str(backend_id)
            if backend_id is None and not positional_fallback:
                logger.warning("item_without_id_skipped", section_id=section_id, position=position)
                continue
            item_id = backend_id if backend_id is not None else str(position)
            key = f"{section_id}_{item_id}"
            items.append(Item(
                item_id=item_id,
                backend_item_id=backend_id,
                key=key,
                name=raw_item.get("name") or raw_item.get("itemName") or "",
                description=raw_item.get("description"),
                weight=_optional_float(raw_item.get("weight")),
                source_ref=raw_item,
            ))
            self.edits[key] = self._resolve(raw_item)
        return items

    # Resolution priority chain

    def _resolve(self, holder: dict[str, Any]) -> EditRecord:
        if self.form_kind is FormKind.PM:
            chosen = self._choose_pm(holder)
        else:
            chosen = self._choose_multi_rater(holder)
        return self._record(holder, chosen)

    def _choose_pm(self, holder: dict[str, Any]) -> Optional[tuple[dict[str, Any], Provenance]]:
        official = _entry(holder, OFFICIAL_ENTRY)
        self_entry = _entry(holder, SELF_ENTRY)

        if _is_writable(official, self.infer_from_key):
            return official, Provenance.OFFICIAL
        if self_entry:
            return self_entry, Provenance.SELF
        if official:
            return official, Provenance.OFFICIAL
        return None

    def _choose_multi_rater(self, holder: dict[str, Any]) -> Optional[tuple[dict[str, Any], Provenance]]:
        self_entry = _entry(holder, SELF_ENTRY)
        if self_entry and self._belongs_to_actor(self_entry):
            return self_entry, Provenance.SELF

        others = results(holder.get(OTHERS_ENTRY))
        if self.actor_user_id:
            own = next((e for e in others if e.get("userId") == self.actor_user_id), None)
            if own:
                return own, Provenance.OTHERS

        # First entry carrying a key is taken as the actor's; the backend only
        # issues keys for entries the actor may write.
        keyed = next((e for e in others if e.get("ratingKey") or e.get("commentKey")), None)
        if keyed:
            return keyed, Provenance.OTHERS
        return None

    def _belongs_to_actor(self, self_entry: dict[str, Any]) -> bool:
        owner = self_entry.get("userId")
        if not self.actor_user_id or not owner:
            return True
        return owner == self.actor_user_id

    def _resolve_summary(self, raw_summary: dict[str, Any]) -> EditRecord:
        overall = _entry(raw_summary, OVERALL_ENTRY)
        if overall:
            return self._record(raw_summary, (overall, Provenance.OVERALL))

        official = _entry(raw_summary, OFFICIAL_ENTRY)
        self_entry = _entry(raw_summary, SELF_ENTRY)
        if _is_writable(official, self.infer_from_key):
            chosen = (official, Provenance.OFFICIAL)
        elif self_entry:
            chosen = (self_entry, Provenance.SELF)
        elif official:
            chosen = (official, Provenance.OFFICIAL)
        else:
            chosen = None
        return self._record(raw_summary, chosen)

    def _record(
        self,
        holder: dict[str, Any],
        chosen: Optional[tuple[dict[str, Any], Provenance]],
    ) -> EditRecord:
        self_entry = _entry(holder, SELF_ENTRY) or {}
        others = [
            RaterFeedback(
                user_id=entry.get("userId"),
                full_name=entry.get("fullName") or entry.get("userFullName"),
                category=entry.get("raterCategory") or entry.get("category"),
                rating=normalize_rating(entry.get("rating")),
                comment=entry.get("comment") or "",
            )
            for entry in results(holder.get(OTHERS_ENTRY))
        ]
        reference = {
            "self_rating": normalize_rating(self_entry.get("rating")),
            "self_comment": self_entry.get("comment") or "",
            "others": others,
        }

        if chosen is None:
            return EditRecord(**reference)

        entry, provenance = chosen
        rating = normalize_rating(entry.get("rating"))
        comment = entry.get("comment") or ""
        raw_rating = entry.get("rating")

        if self.form_kind is FormKind.PM and provenance is Provenance.SELF:
            # The subject's own entry is shown to the reviewer, never edited by them.
            rating_permission = comment_permission = Permission.READ
        else:
            rating_permission = _permission(entry, "ratingPermission", "ratingKey", self.infer_from_key)
            comment_permission = _permission(entry, "commentPermission", "commentKey", self.infer_from_key)

        return EditRecord(
            rating=rating,
            comment=comment,
            rating_key=entry.get("ratingKey") or None,
            comment_key=entry.get("commentKey") or None,
            rating_permission=rating_permission,
            comment_permission=comment_permission,
            rating_provenance=provenance,
            author_user_id=self._author(entry, provenance),
            original_rating=rating,
            original_comment=comment,
            source_rating=None if raw_rating in (None, "") else str(raw_rating),
            **reference,
        )

    def _author(self, entry: dict[str, Any], provenance: Provenance) -> str:
        if provenance is Provenance.SELF:
            return entry.get("userId") or self.subject_user_id or ""
        if provenance is Provenance.OTHERS:
            return entry.get("userId") or ""
        return ""
