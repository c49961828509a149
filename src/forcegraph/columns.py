"""Column metadata and role lookup for force graph data views."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Union

SOURCE_ROLE = "Source"
TARGET_ROLE = "Target"
WEIGHT_ROLE = "Weight"
LINK_TYPE_ROLE = "LinkType"
SOURCE_TYPE_ROLE = "SourceType"
TARGET_TYPE_ROLE = "TargetType"

KNOWN_ROLES = (
    SOURCE_ROLE,
    TARGET_ROLE,
    WEIGHT_ROLE,
    LINK_TYPE_ROLE,
    SOURCE_TYPE_ROLE,
    TARGET_TYPE_ROLE,
)


class ColumnType(Enum):
    TEXT = "text"
    NUMERIC = "numeric"
    DATE = "date"


def _normalize_roles(roles: Union[Mapping[str, Any], Iterable[str], None]) -> FrozenSet[str]:
    if roles is None:
        return frozenset()
    if isinstance(roles, str):
        return frozenset({roles})
    if isinstance(roles, Mapping):
        return frozenset(name for name, enabled in roles.items() if enabled)
    return frozenset(roles)


@dataclass(frozen=True)
class ColumnDescriptor:
    """One column of the host data view.

    ``roles`` accepts either an iterable of role names or the host's
    ``{"Source": True}`` mapping form; only truthy entries count.
    """

    display_name: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    type: ColumnType = ColumnType.TEXT
    format: Optional[str] = None
    query_name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", _normalize_roles(self.roles))

    def has_role(self, role_name: str) -> bool:
        return role_name in self.roles


@dataclass
class DataView:
    """Tabular payload delivered by the host on every update."""

    columns: Optional[List[ColumnDescriptor]] = None
    rows: Optional[List[Sequence[Any]]] = None
    objects: Optional[Mapping[str, Any]] = None


def get_column_by_role_name(
    columns: Optional[Sequence[ColumnDescriptor]], role_name: Optional[str]
) -> Optional[ColumnDescriptor]:
    """Return the first column carrying ``role_name`` or ``None``."""
    if not columns or not role_name:
        return None
    for column in columns:
        if column is None:
            continue
        roles = getattr(column, "roles", None)
        if roles and role_name in roles:
            return column
    return None


def get_column_index_by_role_name(
    columns: Optional[Sequence[ColumnDescriptor]], role_name: Optional[str]
) -> Optional[int]:
    column = get_column_by_role_name(columns, role_name)
    if column is None:
        return None
    for idx, candidate in enumerate(columns or ()):
        if candidate is column:
            return idx
    return None


class MetadataRoleHelper:
    get_column_by_role_name = staticmethod(get_column_by_role_name)
    get_column_index_by_role_name = staticmethod(get_column_index_by_role_name)
