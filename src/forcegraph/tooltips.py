"""Tooltip item assembly from role-keyed records."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

from .columns import ColumnDescriptor, get_column_by_role_name


@dataclass(frozen=True)
class TooltipItem:
    display_name: str
    value: Any


def build(
    input_object: Optional[Mapping[str, Any]],
    columns: Optional[Sequence[ColumnDescriptor]],
) -> List[TooltipItem]:
    """Turn ``{role: value}`` into tooltip items in key order.

    Keys are resolved as role names against ``columns``; a key with no
    matching column is shown under its own name.
    """
    if not input_object:
        return []
    items: List[TooltipItem] = []
    for key, value in input_object.items():
        column = get_column_by_role_name(columns, key)
        display_name = column.display_name if column is not None else key
        items.append(TooltipItem(display_name=display_name, value=value))
    return items


class TooltipsFactory:
    build = staticmethod(build)
