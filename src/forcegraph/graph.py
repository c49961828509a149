"""Graph construction from relational rows."""
from __future__ import annotations

import logging
import math
import sys
from collections import deque
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from .columns import (
    LINK_TYPE_ROLE,
    SOURCE_ROLE,
    SOURCE_TYPE_ROLE,
    TARGET_ROLE,
    TARGET_TYPE_ROLE,
    WEIGHT_ROLE,
    DataView,
    get_column_by_role_name,
    get_column_index_by_role_name,
)
from .formatting import format_value

LOGGER = logging.getLogger(__name__)

EdgeKey = Tuple[str, str]


class WeightPolicy(Enum):
    """How rows sharing one ordered (source, target) pair combine."""

    SUM = "sum"
    COUNT = "count"
    LAST = "last"


@dataclass
class InputRow:
    source: Any
    target: Any
    weight: Optional[float] = None
    link_type: Optional[str] = None
    source_type: Optional[str] = None
    target_type: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Node:
    id: str
    value: Any
    label: str
    node_type: Optional[str] = None
    image: Optional[str] = None
    degree: int = 0
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    fx: Optional[float] = None
    fy: Optional[float] = None

    @property
    def pinned(self) -> bool:
        return self.fx is not None and self.fy is not None


@dataclass
class Edge:
    source: str
    target: str
    weight: Optional[float] = None
    row_count: int = 0
    is_self_loop: bool = False
    ordinal: int = 0
    parallel_count: int = 1
    link_type: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> EdgeKey:
        return (self.source, self.target)

    def tooltip_info(self, nodes: Dict[str, Node]) -> Dict[str, Any]:
        info: Dict[str, Any] = {
            SOURCE_ROLE: nodes[self.source].label if self.source in nodes else self.source,
            TARGET_ROLE: nodes[self.target].label if self.target in nodes else self.target,
        }
        if self.weight is not None:
            info[WEIGHT_ROLE] = self.weight
        if self.link_type is not None:
            info[LINK_TYPE_ROLE] = self.link_type
        for name, value in self.extras.items():
            info.setdefault(name, value)
        return info


@dataclass
class Graph:
    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)

    def edge(self, key: EdgeKey) -> Optional[Edge]:
        for edge in self.edges:
            if edge.key == key:
                return edge
        return None

    def adjacent_edges(self, node_id: str) -> Set[EdgeKey]:
        return {edge.key for edge in self.edges if node_id in edge.key}

    def reachable_edges(self, node_id: str) -> Set[EdgeKey]:
        """Edges on any directed path starting at ``node_id``."""
        outgoing: Dict[str, List[Edge]] = {}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)
        reached: Set[EdgeKey] = set()
        visited = {node_id}
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for edge in outgoing.get(current, []):
                reached.add(edge.key)
                if edge.target not in visited:
                    visited.add(edge.target)
                    queue.append(edge.target)
        return reached


def node_identity(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class GraphBuilder:
    """Deduplicates rows into nodes and edges.

    A value seen as a source in one row and a target in another resolves to
    the same node. Rows sharing an ordered (source, target) pair fold into one
    edge whose weight follows ``weight_policy``.
    """

    def __init__(
        self,
        weight_policy: WeightPolicy = WeightPolicy.SUM,
        *,
        source_format: Optional[str] = None,
        target_format: Optional[str] = None,
        image_url: str = "",
        image_ext: str = ".png",
        default_image: Optional[str] = None,
    ) -> None:
        self.weight_policy = weight_policy
        self.source_format = source_format
        self.target_format = target_format
        self.image_url = image_url
        self.image_ext = image_ext
        self.default_image = default_image

    def build(self, rows: Optional[Sequence[InputRow]]) -> Graph:
        graph = Graph()
        if not rows:
            return graph

        edge_by_key: Dict[EdgeKey, Edge] = {}
        for row in rows:
            source = self._node_for(graph, row.source, row.source_type, self.source_format)
            target = self._node_for(graph, row.target, row.target_type, self.target_format)
            key = (source.id, target.id)
            edge = edge_by_key.get(key)
            if edge is None:
                edge = Edge(
                    source=source.id,
                    target=target.id,
                    is_self_loop=source.id == target.id,
                    link_type=row.link_type,
                )
                edge_by_key[key] = edge
                graph.edges.append(edge)
                if not edge.is_self_loop:
                    source.degree += 1
                    target.degree += 1
            self._accumulate(edge, row.weight)
            edge.extras.update(row.extras)

        self._assign_ordinals(graph.edges)
        for node in graph.nodes.values():
            node.image = self._image_for(node)
        LOGGER.debug(
            "Built graph with %d nodes and %d edges from %d rows",
            len(graph.nodes),
            len(graph.edges),
            len(rows),
        )
        return graph

    def _node_for(
        self, graph: Graph, value: Any, node_type: Optional[str], format_string: Optional[str]
    ) -> Node:
        identity = node_identity(value)
        node = graph.nodes.get(identity)
        if node is None:
            node = Node(
                id=identity,
                value=value,
                label=format_value(value, format_string),
                node_type=node_type,
            )
            graph.nodes[identity] = node
        elif node.node_type is None and node_type is not None:
            node.node_type = node_type
        return node

    def _accumulate(self, edge: Edge, weight: Optional[float]) -> None:
        edge.row_count += 1
        if self.weight_policy is WeightPolicy.COUNT:
            edge.weight = float(edge.row_count)
            return
        if weight is None:
            return
        weight = float(weight)
        if not math.isfinite(weight):
            LOGGER.debug("Ignoring non-finite weight on %s -> %s", edge.source, edge.target)
            return
        if self.weight_policy is WeightPolicy.LAST or edge.weight is None:
            edge.weight = weight
            return
        total = edge.weight + weight
        # Overflowing sums clamp to the largest finite float.
        edge.weight = total if math.isfinite(total) else math.copysign(sys.float_info.max, total)

    @staticmethod
    def _assign_ordinals(edges: List[Edge]) -> None:
        by_pair: Dict[Tuple[str, str], List[Edge]] = {}
        for edge in edges:
            pair = tuple(sorted(edge.key))
            by_pair.setdefault(pair, []).append(edge)
        for members in by_pair.values():
            for ordinal, edge in enumerate(members):
                edge.ordinal = ordinal
                edge.parallel_count = len(members)

    def _image_for(self, node: Node) -> Optional[str]:
        name = node.node_type or self.default_image
        if not name:
            return None
        return f"{self.image_url}{name}{self.image_ext}"


def rows_from_data_view(view: Optional[DataView]) -> List[InputRow]:
    """Map data view columns to rows by role; no Source/Target means no rows."""
    if view is None or not view.columns or not view.rows:
        return []
    columns = view.columns
    source_idx = get_column_index_by_role_name(columns, SOURCE_ROLE)
    target_idx = get_column_index_by_role_name(columns, TARGET_ROLE)
    if source_idx is None or target_idx is None:
        LOGGER.debug("Data view lacks a Source or Target column; nothing to build")
        return []
    weight_idx = get_column_index_by_role_name(columns, WEIGHT_ROLE)
    link_type_idx = get_column_index_by_role_name(columns, LINK_TYPE_ROLE)
    source_type_idx = get_column_index_by_role_name(columns, SOURCE_TYPE_ROLE)
    target_type_idx = get_column_index_by_role_name(columns, TARGET_TYPE_ROLE)

    def _cell(values: Sequence[Any], idx: Optional[int]) -> Any:
        if idx is None or idx >= len(values):
            return None
        return values[idx]

    rows: List[InputRow] = []
    for values in view.rows:
        if values is None:
            continue
        weight = _cell(values, weight_idx)
        if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not math.isfinite(weight):
            weight = None
        link_type = _cell(values, link_type_idx)
        source_type = _cell(values, source_type_idx)
        target_type = _cell(values, target_type_idx)
        extras = {
            column.display_name: _cell(values, idx)
            for idx, column in enumerate(columns)
            if idx not in {source_idx, target_idx, weight_idx, link_type_idx, source_type_idx, target_type_idx}
        }
        rows.append(
            InputRow(
                source=_cell(values, source_idx),
                target=_cell(values, target_idx),
                weight=weight,
                link_type=None if link_type is None else str(link_type),
                source_type=None if source_type is None else str(source_type),
                target_type=None if target_type is None else str(target_type),
                extras=extras,
            )
        )
    return rows


def builder_for_view(
    view: Optional[DataView],
    weight_policy: WeightPolicy = WeightPolicy.SUM,
    **image_options: Any,
) -> GraphBuilder:
    columns = view.columns if view is not None else None
    source_column = get_column_by_role_name(columns, SOURCE_ROLE)
    target_column = get_column_by_role_name(columns, TARGET_ROLE)
    return GraphBuilder(
        weight_policy,
        source_format=source_column.format if source_column is not None else None,
        target_format=target_column.format if target_column is not None else None,
        **image_options,
    )
