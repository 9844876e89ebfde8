"""Saved view presets: filter predicates, combinator and sort keys as JSON.

A preset file looks like::

    {
      "combinator": "and",
      "filters": [{"column_id": "c1", "operator": "contains", "value": "a"}],
      "sort": [{"column_id": "c2", "direction": "desc"}]
    }

Column ids are table specific, so a preset only makes sense for the table
it was saved from.
"""

import json
from dataclasses import dataclass
from typing import Any

from reflex_eav_grid.errors import ValidationError
from reflex_eav_grid.filtering import validate_predicates
from reflex_eav_grid.models import Combinator, FilterPredicate, SortKey
from reflex_eav_grid.sorting import validate_sort_keys


@dataclass(frozen=True)
class ViewPreset:
    predicates: tuple[FilterPredicate, ...] = ()
    combinator: Combinator = "and"
    sort_keys: tuple[SortKey, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.predicates and not self.sort_keys

    def to_dict(self) -> dict[str, Any]:
        return {
            "combinator": self.combinator,
            "filters": [p.to_dict() for p in self.predicates],
            "sort": [k.to_dict() for k in self.sort_keys],
        }


def dump_preset(preset: ViewPreset) -> str:
    return json.dumps(preset.to_dict(), indent=2, ensure_ascii=False)


def _require_list(data: dict[str, Any], key: str) -> list[Any]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ValidationError(f"Preset field {key!r} must be a list")
    return value


def _require_str(item: dict[str, Any], key: str, default: str | None = None) -> str:
    value = item.get(key, default)
    if not isinstance(value, str):
        raise ValidationError(f"Preset entry field {key!r} must be a string")
    return value


def preset_from_dict(data: Any) -> ViewPreset:
    """Build a :class:`ViewPreset` from decoded JSON.

    Raises:
        ValidationError: If the structure is not a preset.
    """
    if not isinstance(data, dict):
        raise ValidationError("Preset must be a JSON object")

    predicates: list[FilterPredicate] = []
    for item in _require_list(data, "filters"):
        if not isinstance(item, dict):
            raise ValidationError("Filter entries must be objects")
        predicates.append(
            FilterPredicate(
                column_id=_require_str(item, "column_id"),
                operator=_require_str(item, "operator"),
                value=_require_str(item, "value", ""),
            )
        )

    keys: list[SortKey] = []
    for item in _require_list(data, "sort"):
        if not isinstance(item, dict):
            raise ValidationError("Sort entries must be objects")
        keys.append(
            SortKey(
                column_id=_require_str(item, "column_id"),
                direction=_require_str(item, "direction", "asc"),  # type: ignore[arg-type]
            )
        )

    checked, logic = validate_predicates(predicates, data.get("combinator", "and"))
    return ViewPreset(
        predicates=tuple(checked),
        combinator=logic,
        sort_keys=tuple(validate_sort_keys(keys)),
    )


def load_preset(text: str | bytes) -> ViewPreset:
    """Parse a preset from JSON text.

    Raises:
        ValidationError: On malformed JSON or an invalid structure.
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError(f"Preset is not valid UTF-8: {exc}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Preset is not valid JSON: {exc}") from exc
    return preset_from_dict(data)
