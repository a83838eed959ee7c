"""Rebuild a deep-upsert document from a normalized form and its edits."""

from typing import Any, Mapping, Optional

from reviewsync.models.edit_record import EditRecord, Provenance
from reviewsync.models.form import FormIdentity
from reviewsync.models.section import READ_ONLY_KINDS, Item, NormalizedForm, Section, SectionKind
from reviewsync.services.exceptions import SerializationContractError
from reviewsync.utils.logging import get_logger
from reviewsync.utils.odata import (
    entity_metadata,
    form_key,
    format_rating,
    int64_literal,
    is_rating_value,
    string_literal,
)


logger = get_logger(__name__)

RATING_ENTITY = "FormUserRatingComment"
SUMMARY_ENTITY = "FormSummarySection"
SUMMARY_ITEM_ID = 0

# origin -> (section entity, item entity, item navigation property)
SECTION_LAYOUT = {
    "objectiveSections": ("FormObjectiveSection", "FormObjective", "objectives"),
    "competencySections": ("FormCompetencySection", "FormCompetency", "competencies"),
    "customSections": ("FormCustomSection", "FormCustomElement", "customItems"),
}

RATING_NAVIGATION = {
    Provenance.OFFICIAL: "officialRating",
    Provenance.SELF: "selfRatingComment",
    Provenance.OVERALL: "overallFormRating",
    Provenance.OTHERS: "othersRatingComment",
}

COLLECTION_FIELDS = tuple(SECTION_LAYOUT)
SUMMARY_FIELD = "summarySection"


class PayloadSerializer:
    """
    Walk a NormalizedForm plus current edits and emit backend-shaped entities.

    Only items with a changed writable field are emitted, and only their
    writable fields. Sections without emitted items are omitted. Every
    entity key is built from the form identity and the backend
    ``sectionIndex``/``itemId``, never from local ids.

    Serialization performs no I/O. Malformed input (missing identity, missing
    ``sectionIndex`` or ``itemId`` on an entity that must be emitted) raises
    SerializationContractError.
    """

    def serialize(
        self,
        form: NormalizedForm,
        edits: Mapping[str, EditRecord],
        identity: FormIdentity,
    ) -> dict[str, Any]:
        """
        Build the upsert document.

        Args:
            form: Normalized form the edits belong to
            edits: Current EditRecords by key (an EditStateStore snapshot)
            identity: Form identity threaded into every entity key

        Returns:
            Root entity dict; carries no section fields when nothing changed
        """
        if identity is None or identity.form_content_id is None or identity.form_data_id is None:
            raise SerializationContractError("Form identity requires formContentId and formDataId")

        fkey = form_key(identity.form_content_id, identity.form_data_id)
        document: dict[str, Any] = {
            "__metadata": entity_metadata(form.kind.root_entity, fkey),
            "formContentId": str(identity.form_content_id),
            "formDataId": str(identity.form_data_id),
        }

        collections: dict[str, list[dict[str, Any]]] = {}
        for section in form.sections:
            if section.kind in READ_ONLY_KINDS:
                continue

            if section.kind is SectionKind.SUMMARY:
                summary = self._summary(section, edits, fkey)
                if summary is not None:
                    document[SUMMARY_FIELD] = summary
                continue

            entity = self._section(section, edits, fkey)
            if entity is not None:
                collections.setdefault(section.origin, []).append(entity)

        for field in COLLECTION_FIELDS:
            if field in collections:
                document[field] = collections[field]

        logger.info(
            "payload_serialized",
            kind=form.kind.value,
            form_data_id=identity.form_data_id,
            sections={field: len(entities) for field, entities in collections.items()},
            summary=SUMMARY_FIELD in document,
        )
        return document

    @staticmethod
    def has_changes(document: dict[str, Any]) -> bool:
        """True if the document carries anything beyond the root key."""
        return SUMMARY_FIELD in document or any(document.get(field) for field in COLLECTION_FIELDS)

    def _section(
        self,
        section: Section,
        edits: Mapping[str, EditRecord],
        fkey: str,
    ) -> Optional[dict[str, Any]]:
        layout = SECTION_LAYOUT.get(section.origin)
        if layout is None:
            raise SerializationContractError(
                f"Section {section.id} has no serializable origin: {section.origin!r}"
            )
        section_entity, item_entity, items_field = layout

        if section.edit_key is not None:
            # Free-text section: the rating entity hangs off the section itself.
            record = edits.get(section.edit_key)
            if record is None or not record.is_dirty:
                return None
            section_index = self._section_index(section)
            entity = self._section_entity(section_entity, fkey, section_index)
            nav, rating = self._rating(record, fkey, SUMMARY_ITEM_ID, section_index)
            entity[nav] = rating
            return entity

        item_entities = []
        for item in section.items:
            record = edits.get(item.key)
            if record is None or not record.is_dirty:
                continue
            section_index = self._section_index(section)
            item_entities.append(self._item(item, item_entity, record, fkey, section_index))

        if not item_entities:
            return None

        entity = self._section_entity(section_entity, fkey, self._section_index(section))
        entity[items_field] = item_entities
        return entity

    def _summary(
        self,
        section: Section,
        edits: Mapping[str, EditRecord],
        fkey: str,
    ) -> Optional[dict[str, Any]]:
        record = edits.get(section.edit_key or "")
        if record is None or not record.is_dirty:
            return None
        nav, rating = self._rating(record, fkey, SUMMARY_ITEM_ID, self._section_index(section))
        return {
            "__metadata": entity_metadata(SUMMARY_ENTITY, fkey),
            nav: rating,
        }

    @staticmethod
    def _section_entity(entity_type: str, fkey: str, section_index: int) -> dict[str, Any]:
        return {
            "__metadata": entity_metadata(entity_type, f"{fkey},sectionIndex={section_index}"),
            "sectionIndex": section_index,
        }

    def _item(
        self,
        item: Item,
        entity_type: str,
        record: EditRecord,
        fkey: str,
        section_index: int,
    ) -> dict[str, Any]:
        item_id = self._item_id(item)
        nav, rating = self._rating(record, fkey, item_id, section_index)
        return {
            "__metadata": entity_metadata(
                entity_type,
                f"{fkey},itemId={int64_literal(item_id)},sectionIndex={section_index}",
            ),
            "itemId": str(item_id),
            "sectionIndex": section_index,
            nav: rating,
        }

    def _rating(
        self,
        record: EditRecord,
        fkey: str,
        item_id: int,
        section_index: int,
    ) -> tuple[str, Any]:
        nav = RATING_NAVIGATION.get(record.rating_provenance)
        if nav is None:
            raise SerializationContractError(
                f"EditRecord with provenance {record.rating_provenance.value!r} cannot be written"
            )

        rating_type = "overall" if record.rating_provenance is Provenance.OVERALL else "na"
        key = (
            f"{fkey},itemId={int64_literal(item_id)},"
            f"ratingType={string_literal(rating_type)},"
            f"sectionIndex={section_index},"
            f"userId={string_literal(record.author_user_id)}"
        )
        entity: dict[str, Any] = {"__metadata": entity_metadata(RATING_ENTITY, key)}

        if record.is_writable("rating"):
            rating = self._rating_value(record)
            if rating is not None:
                entity["rating"] = rating
            if record.rating_key:
                entity["ratingKey"] = record.rating_key

        if record.is_writable("comment"):
            entity["comment"] = record.comment
            if record.comment_key:
                entity["commentKey"] = record.comment_key

        if record.rating_provenance is Provenance.OTHERS:
            return nav, [entity]
        return nav, entity

    @staticmethod
    def _rating_value(record: EditRecord) -> Optional[str]:
        if record.rating:
            return format_rating(record.rating)
        if is_rating_value(record.source_rating):
            return format_rating(record.source_rating)
        return None

    @staticmethod
    def _section_index(section: Section) -> int:
        if section.backend_section_index is None:
            raise SerializationContractError(f"Section {section.id} has no backend sectionIndex")
        return section.backend_section_index

    @staticmethod
    def _item_id(item: Item) -> int:
        if item.backend_item_id is None:
            raise SerializationContractError(f"Item {item.key} has no backend itemId")
        try:
            return int(item.backend_item_id)
        except ValueError:
            raise SerializationContractError(
                f"Item {item.key} has a non-numeric itemId: {item.backend_item_id!r}"
            ) from None
