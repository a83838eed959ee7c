"""Addressable store of in-progress edits for one open form."""

from typing import Any, Iterator, Optional

from reviewsync.models.edit_record import EditField, EditRecord
from reviewsync.utils.logging import get_logger
from reviewsync.utils.odata import is_rating_value


logger = get_logger(__name__)

EDIT_FIELDS = ("rating", "comment")


class EditStateStore:
    """
    Flat key -> EditRecord map with a permission gate on every write.

    The store owns copies of the records it was created from and hands out
    copies, so ``set`` is the only way to change a record.

    Example:
        >>> store = EditStateStore(form.initial_edits)
        >>> store.set("comp_0_101", "rating", "5")
        True
        >>> store.set("comp_0_102", "rating", "1")  # read-only
        False
    """

    def __init__(self, records: Optional[dict[str, EditRecord]] = None):
        self._records: dict[str, EditRecord] = {
            key: record.model_copy(deep=True) for key, record in (records or {}).items()
        }

    def get(self, key: str) -> Optional[EditRecord]:
        """Copy of one record; changes go through ``set``."""
        record = self._records.get(key)
        return None if record is None else record.model_copy(deep=True)

    def set(self, key: str, field: EditField, value: Any) -> bool:
        """
        Update one field of one record.

        Writes to unknown keys, unknown fields, or fields whose permission is
        not ``write`` are ignored.

        Args:
            key: EditState key
            field: "rating" or "comment"
            value: New value; ratings accept str, int or float, "" clears

        Returns:
            True if the record was updated, False if the write was blocked

        Raises:
            ValueError: Non-numeric rating on a writable field
        """
        record = self._records.get(key)
        if record is None:
            logger.warning("edit_blocked", key=key, field=field, reason="unknown_key")
            return False

        if field not in EDIT_FIELDS:
            logger.warning("edit_blocked", key=key, field=field, reason="unknown_field")
            return False

        if not record.is_writable(field):
            logger.warning(
                "edit_blocked",
                key=key,
                field=field,
                reason="permission",
                permission=record.permission_for(field).value,
            )
            return False

        if field == "rating":
            text = "" if value is None else str(value).strip()
            if text and not is_rating_value(text):
                raise ValueError(f"Rating for {key} is not numeric: {value!r}")
            record.rating = text
        else:
            record.comment = "" if value is None else str(value)

        logger.debug("edit_applied", key=key, field=field)
        return True

    def is_dirty(self, key: str) -> bool:
        record = self._records.get(key)
        return record is not None and record.is_dirty

    def dirty_keys(self) -> list[str]:
        return [key for key, record in self._records.items() if record.is_dirty]

    def keys(self) -> list[str]:
        return list(self._records)

    def items(self) -> Iterator[tuple[str, EditRecord]]:
        return ((key, record.model_copy(deep=True)) for key, record in self._records.items())

    def snapshot(self) -> dict[str, EditRecord]:
        """Deep copy of the current records."""
        return {key: record.model_copy(deep=True) for key, record in self._records.items()}

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)
