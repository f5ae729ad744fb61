"""Service for computing field-level changes between document states."""
from typing import Any, Optional

from deepdiff import DeepDiff


class DiffService:
    """Compute before/after changes of public documents for the audit trail."""

    IGNORED_FIELDS = frozenset({"updated_on", "last_modified_by", "contains"})

    def _serialize_value(self, value: Any) -> Any:
        if value is None or isinstance(value, (str, int, float, bool, list, dict)):
            return value
        if hasattr(value, "value"):
            return value.value
        if hasattr(value, "isoformat"):
            return value.isoformat()
        return str(value)

    def _comparable(self, document: dict) -> dict:
        return {
            key: self._serialize_value(value)
            for key, value in document.items()
            if key not in self.IGNORED_FIELDS
        }

    @staticmethod
    def _top_level_field(path: str) -> str:
        # "root['custom']['a']" -> "custom"
        return path.removeprefix("root['").split("']", 1)[0]

    def compute_changes(self, before: dict, after: dict) -> list[dict]:
        """List changed top-level fields between two document states.

        Nested changes (e.g. one key inside ``custom``) are reported once for
        their top-level field with the full old and new values.

        Args:
            before: Document before the change
            after: Document after the change

        Returns:
            List of ``{"field", "old_value", "new_value"}`` sorted by field
        """
        from_data = self._comparable(before)
        to_data = self._comparable(after)

        diff = DeepDiff(from_data, to_data, ignore_order=True, verbose_level=2)

        fields: set[str] = set()
        for category in (
            "values_changed",
            "type_changes",
            "dictionary_item_added",
            "dictionary_item_removed",
            "iterable_item_added",
            "iterable_item_removed",
        ):
            for path in diff.get(category, {}):
                fields.add(self._top_level_field(path))

        return [
            {
                "field": field,
                "old_value": from_data.get(field),
                "new_value": to_data.get(field),
            }
            for field in sorted(fields)
        ]

    def summarize(self, before: Optional[dict], after: Optional[dict]) -> dict:
        """Audit diff payload: changes plus their count."""
        changes = self.compute_changes(before or {}, after or {})
        return {"changes": changes, "modified": len(changes)}
