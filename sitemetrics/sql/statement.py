# ==============================================================================
# SQL Statement Builder
# ==============================================================================
"""
Trusted SQL fragments and caller values, kept apart.

- Sql: code-authored SQL text plus the parameters its placeholders refer to.
  Fragments compose with ``+``, ``Sql.join`` and ``Sql.format``.
- Param: a caller-supplied value with an optional type hint. Values never
  become SQL text; they only reach the driver through a Binder.

Placeholders use the logical form ``{{name}}``. Composition slots use
``{name}`` and are filled with other Sql fragments by ``Sql.format``.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sitemetrics.core.errors import ParameterCollisionError

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")
SLOT_PATTERN = re.compile(r"(?<!\{)\{(\w+)\}(?!\})")


class ParamType(str, Enum):
    """Type hints understood by both binders."""

    UUID = "uuid"
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    TIMESTAMP = "timestamp"
    DATE = "date"


@dataclass(frozen=True)
class Param:
    """A bound value and its optional type hint."""

    value: Any
    type: ParamType | None = None


def merge_params(*bags: Mapping[str, Param]) -> dict[str, Param]:
    """Merge parameter bags; one name may only carry one value."""
    merged: dict[str, Param] = {}
    for bag in bags:
        for name, value in bag.items():
            existing = merged.get(name)
            if existing is not None and existing != value:
                raise ParameterCollisionError(name)
            merged[name] = value
    return merged


@dataclass(frozen=True)
class Sql:
    """
    A trusted SQL fragment.

    ``text`` must only ever be written in code. Anything that comes from a
    caller is attached as a Param and referenced through a placeholder.
    """

    text: str
    params: Mapping[str, Param] = field(default_factory=dict)

    def __add__(self, other: "Sql") -> "Sql":
        return Sql(self.text + other.text, merge_params(self.params, other.params))

    def __bool__(self) -> bool:
        return bool(self.text.strip())

    @classmethod
    def join(cls, separator: str, parts: Iterable["Sql"]) -> "Sql":
        """Join non-empty fragments with a separator."""
        parts = [p for p in parts if p]
        return cls(
            separator.join(p.text for p in parts),
            merge_params(*(p.params for p in parts)),
        )

    def format(self, **slots: "Sql") -> "Sql":
        """Fill ``{slot}`` markers with fragments, merging their parameters."""
        missing = [name for name in SLOT_PATTERN.findall(self.text) if name not in slots]
        if missing:
            raise KeyError(f"Unfilled SQL slot(s): {', '.join(missing)}")
        text = SLOT_PATTERN.sub(lambda m: slots[m.group(1)].text, self.text)
        return Sql(text, merge_params(self.params, *(s.params for s in slots.values())))

    def placeholders(self) -> list[str]:
        """Placeholder names referenced by the text, in first-use order."""
        return list(dict.fromkeys(PLACEHOLDER_PATTERN.findall(self.text)))


EMPTY = Sql("")


def param(name: str, value: Any, type: ParamType | None = None) -> Sql:
    """A placeholder fragment bound to a value."""
    return Sql("{{" + name + "}}", {name: Param(value, type)})
