"""SVG scene renderer for force graph nodes and links.

The scene is a live :mod:`xml.etree.ElementTree` tree. Shapes are keyed by
node id or edge key and mutated in place across updates; elements are only
created for new identities and detached for vanished ones.
"""
from __future__ import annotations

import copy
import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from PIL import ImageFont

from .colors import DEFAULT_LINK_COLOR, ColorContext, interpolate_weight_color
from .formatting import format_number, truncate
from .graph import Edge, EdgeKey, Node
from .settings import FormatSettings

LOGGER = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)

DEFAULT_FONT_FAMILY = "sans-serif"
GENERIC_FONT_FALLBACKS = {
    "sans-serif": ["Helvetica", "Arial", "Liberation Sans", "DejaVu Sans"],
    "serif": ["Times New Roman", "Times", "Liberation Serif", "DejaVu Serif"],
    "monospace": ["Courier New", "Courier", "Liberation Mono", "DejaVu Sans Mono"],
}

ARROW_MARKER_ID = "forcegraph-arrow"
LABEL_GAP = 3.0
LOOP_SPREAD = 0.6
LOOP_REACH = 2.5
PARALLEL_OFFSET = 4.0
MIN_LINK_WIDTH = 1.0
MAX_LINK_WIDTH = 5.0
FADED_OPACITY = "0.2"


class TextMeasurer:
    """Caches Pillow fonts and measures label widths in pixels."""

    FONT_DIRS = [
        Path("/System/Library/Fonts"),
        Path("/System/Library/Fonts/Supplemental"),
        Path("/Library/Fonts"),
        Path("~/Library/Fonts").expanduser(),
        Path("/usr/share/fonts"),
        Path("/usr/local/share/fonts"),
        Path("C:/Windows/Fonts"),
    ]

    def __init__(self, family: str = DEFAULT_FONT_FAMILY) -> None:
        self.family = family
        self._font_cache: Dict[int, ImageFont.ImageFont] = {}
        self._font_path: Optional[str] = None
        self._font_path_resolved = False

    def font(self, size: float) -> ImageFont.ImageFont:
        key_size = max(1, int(round(size)))
        if key_size in self._font_cache:
            return self._font_cache[key_size]
        candidates: List[str] = []
        path = self._resolve_font_path()
        if path:
            candidates.append(path)
        candidates.append("DejaVuSans.ttf")
        font: Optional[ImageFont.ImageFont] = None
        for candidate in candidates:
            try:
                font = ImageFont.truetype(candidate, key_size)
                break
            except OSError:
                continue
        if font is None:
            font = ImageFont.load_default()
        self._font_cache[key_size] = font
        return font

    def measure(self, text: str, size: float) -> Tuple[float, float]:
        """Return ``(width, height)`` of ``text`` at ``size`` pixels."""
        if not text:
            return 0.0, 0.0
        left, top, right, bottom = self.font(size).getbbox(text)
        return float(right - left), float(max(bottom - top, size))

    def _resolve_font_path(self) -> Optional[str]:
        if self._font_path_resolved:
            return self._font_path
        self._font_path_resolved = True
        for family in GENERIC_FONT_FALLBACKS.get(self.family.lower(), [self.family]):
            self._font_path = self._locate_font(family)
            if self._font_path:
                break
        return self._font_path

    def _locate_font(self, family: str) -> Optional[str]:
        normalized = re.sub(r"[^a-z0-9]+", "", family, flags=re.IGNORECASE).lower()
        if not normalized:
            return None
        best_match: Optional[Tuple[int, str]] = None
        for directory in self.FONT_DIRS:
            if not directory.exists():
                continue
            try:
                for path in directory.rglob("*.ttf"):
                    stem = re.sub(r"[^a-z0-9]+", "", path.stem, flags=re.IGNORECASE).lower()
                    if stem == normalized:
                        score = 0
                    elif stem.startswith(normalized):
                        score = 1
                    else:
                        continue
                    if best_match is None or score < best_match[0]:
                        best_match = (score, str(path))
            except OSError:
                continue
        return best_match[1] if best_match else None


@dataclass
class _NodeShape:
    group: ET.Element
    circle: ET.Element
    image: Optional[ET.Element] = None
    text: Optional[ET.Element] = None


def _q(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


def _fmt(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _px(value: float) -> str:
    return f"{value:.4f}".rstrip("0").rstrip(".") + "px"


def _style(**declarations: str) -> str:
    return ";".join(f"{name.replace('_', '-')}:{value}" for name, value in declarations.items())


def style_value(element: ET.Element, name: str) -> Optional[str]:
    """Read one declaration out of an element's inline ``style``."""
    for declaration in (element.get("style") or "").split(";"):
        key, _, value = declaration.partition(":")
        if key.strip() == name:
            return value.strip()
    return None


def straight_link_path(
    source: Tuple[float, float],
    target: Tuple[float, float],
    source_radius: float,
    target_radius: float,
    offset: float = 0.0,
) -> str:
    """Line between two circles, clipped to their boundaries."""
    (sx, sy), (tx, ty) = source, target
    dx, dy = tx - sx, ty - sy
    length = math.hypot(dx, dy)
    if length <= 1e-9:
        return f"M {_fmt(sx)} {_fmt(sy)} L {_fmt(tx)} {_fmt(ty)}"
    ux, uy = dx / length, dy / length
    nx, ny = -uy * offset, ux * offset
    if length <= source_radius + target_radius:
        start = (sx + nx, sy + ny)
        end = (tx + nx, ty + ny)
    else:
        start = (sx + ux * source_radius + nx, sy + uy * source_radius + ny)
        end = (tx - ux * target_radius + nx, ty - uy * target_radius + ny)
    return f"M {_fmt(start[0])} {_fmt(start[1])} L {_fmt(end[0])} {_fmt(end[1])}"


def self_loop_path(center: Tuple[float, float], radius: float) -> str:
    """Cubic loop leaving and re-entering the circle at its upper right."""
    cx, cy = center
    angle = -math.pi / 4.0
    reach = radius * LOOP_REACH + 10.0
    px = cx + radius * math.cos(angle)
    py = cy + radius * math.sin(angle)
    c1x = cx + reach * math.cos(angle - LOOP_SPREAD)
    c1y = cy + reach * math.sin(angle - LOOP_SPREAD)
    c2x = cx + reach * math.cos(angle + LOOP_SPREAD)
    c2y = cy + reach * math.sin(angle + LOOP_SPREAD)
    return (
        f"M {_fmt(px)} {_fmt(py)} "
        f"C {_fmt(c1x)} {_fmt(c1y)}, {_fmt(c2x)} {_fmt(c2y)}, {_fmt(px)} {_fmt(py)}"
    )


class SceneRenderer:
    """Reconciles graph state against a persistent SVG element tree."""

    def __init__(
        self, width: float = 1000.0, height: float = 500.0, measurer: Optional[TextMeasurer] = None
    ) -> None:
        self.measurer = measurer or TextMeasurer()
        self.root = ET.Element(_q("svg"), {"class": "forceGraph"})
        self.defs = ET.SubElement(self.root, _q("defs"))
        self.main = ET.SubElement(self.root, _q("g"), {"class": "main"})
        self._links: Dict[EdgeKey, ET.Element] = {}
        self._link_labels: Dict[EdgeKey, ET.Element] = {}
        self._nodes: Dict[str, _NodeShape] = {}
        self._link_ids: Dict[EdgeKey, str] = {}
        self._next_link_id = 0
        self._arrow: Optional[ET.Element] = None
        self._highlight: Optional[Set[EdgeKey]] = None
        self.resize(width, height)

    def resize(self, width: float, height: float) -> None:
        self.width = width
        self.height = height
        self.root.set("width", _fmt(width))
        self.root.set("height", _fmt(height))
        self.root.set("viewBox", f"0 0 {_fmt(width)} {_fmt(height)}")

    def set_highlight(self, edge_keys: Optional[Iterable[EdgeKey]]) -> None:
        """Fade every link outside ``edge_keys``; ``None`` clears it."""
        self._highlight = None if edge_keys is None else set(edge_keys)

    def update(
        self,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        settings: Optional[FormatSettings] = None,
        color_context: Optional[ColorContext] = None,
        positions: Optional[Mapping[str, Tuple[float, float]]] = None,
    ) -> None:
        settings = settings or FormatSettings()
        colors = color_context or ColorContext()
        node_by_id = {node.id: node for node in nodes}
        edges = [edge for edge in edges if edge.source in node_by_id and edge.target in node_by_id]

        def _position(node: Node) -> Tuple[float, float]:
            if positions is not None and node.id in positions:
                return positions[node.id]
            return node.x, node.y

        radii = {node.id: settings.nodes.radius_for(node.degree) for node in nodes}
        centers = {node.id: _position(node) for node in nodes}

        added, removed = self._reconcile_nodes(node_by_id)
        link_added, link_removed = self._reconcile_links(edges)
        if added or removed or link_added or link_removed:
            LOGGER.debug(
                "Scene reconcile: +%d/-%d nodes, +%d/-%d links",
                added,
                removed,
                link_added,
                link_removed,
            )

        self._update_arrow_marker(settings, colors)
        max_weight = max((edge.weight or 0.0 for edge in edges), default=0.0)
        for edge in edges:
            self._update_link(edge, settings, colors, centers, radii, max_weight)
        self._update_link_labels(edges, settings, colors)

        visible_labels = self._visible_labels(nodes, settings, centers, radii)
        for node in nodes:
            self._update_node(
                node,
                settings,
                colors,
                centers[node.id],
                radii[node.id],
                node.id in visible_labels,
            )

        ordered: List[ET.Element] = [self._links[edge.key] for edge in edges]
        ordered.extend(self._link_labels[edge.key] for edge in edges if edge.key in self._link_labels)
        ordered.extend(self._nodes[node.id].group for node in nodes)
        self.main[:] = ordered

    @property
    def link_paths(self) -> List[ET.Element]:
        return [el for el in self.main if el.tag == _q("path") and el.get("class") == "link"]

    @property
    def links_by_key(self) -> Dict[EdgeKey, ET.Element]:
        return dict(self._links)

    @property
    def node_groups(self) -> List[ET.Element]:
        return [el for el in self.main if el.get("class") == "node"]

    @property
    def circles(self) -> List[ET.Element]:
        return [shape.circle for shape in self._nodes.values()]

    @property
    def node_texts(self) -> List[ET.Element]:
        return [shape.text for shape in self._nodes.values() if shape.text is not None]

    @property
    def images(self) -> List[ET.Element]:
        return [shape.image for shape in self._nodes.values() if shape.image is not None]

    @property
    def link_labels(self) -> List[ET.Element]:
        return list(self._link_labels.values())

    @property
    def link_label_text_paths(self) -> List[ET.Element]:
        return [label.find(_q("textPath")) for label in self._link_labels.values()]

    def contains(self, element: Optional[ET.Element]) -> bool:
        if element is None:
            return False
        return any(candidate is element for candidate in self.root.iter())

    def to_svg(self) -> str:
        snapshot = copy.deepcopy(self.root)
        ET.indent(snapshot, space="  ")
        return ET.tostring(snapshot, encoding="unicode")

    def _reconcile_nodes(self, node_by_id: Mapping[str, Node]) -> Tuple[int, int]:
        vanished = [node_id for node_id in self._nodes if node_id not in node_by_id]
        for node_id in vanished:
            del self._nodes[node_id]
        added = 0
        for node_id in node_by_id:
            if node_id in self._nodes:
                continue
            group = ET.Element(_q("g"), {"class": "node", "data-id": node_id})
            circle = ET.SubElement(group, _q("circle"))
            self._nodes[node_id] = _NodeShape(group=group, circle=circle)
            added += 1
        return added, len(vanished)

    def _reconcile_links(self, edges: Sequence[Edge]) -> Tuple[int, int]:
        keys = {edge.key for edge in edges}
        vanished = [key for key in self._links if key not in keys]
        for key in vanished:
            del self._links[key]
            del self._link_ids[key]
            self._link_labels.pop(key, None)
        added = 0
        for edge in edges:
            if edge.key in self._links:
                continue
            link_id = f"linkid_{self._next_link_id}"
            self._next_link_id += 1
            self._link_ids[edge.key] = link_id
            self._links[edge.key] = ET.Element(_q("path"), {"class": "link", "id": link_id})
            added += 1
        return added, len(vanished)

    def _update_arrow_marker(self, settings: FormatSettings, colors: ColorContext) -> None:
        if not settings.links.show_arrow:
            if self._arrow is not None:
                self.defs.remove(self._arrow)
                self._arrow = None
            return
        if self._arrow is None:
            self._arrow = ET.SubElement(
                self.defs,
                _q("marker"),
                {
                    "id": ARROW_MARKER_ID,
                    "viewBox": "0 -5 10 10",
                    "refX": "10",
                    "refY": "0",
                    "markerWidth": "6",
                    "markerHeight": "6",
                    "orient": "auto",
                },
            )
            ET.SubElement(self._arrow, _q("path"), {"d": "M 0 -5 L 10 0 L 0 5"})
        fill = colors.foreground if colors.is_high_contrast else DEFAULT_LINK_COLOR
        self._arrow[0].set("fill", fill)

    def _link_color(
        self, edge: Edge, settings: FormatSettings, colors: ColorContext, max_weight: float
    ) -> str:
        if colors.is_high_contrast:
            return colors.foreground
        mode = settings.links.color_link
        if mode == "byLinkType" and edge.link_type is not None:
            return colors.color_for(("linkType", edge.link_type))
        if mode == "byWeight" and max_weight > 0 and edge.weight is not None:
            return interpolate_weight_color(edge.weight / max_weight)
        return DEFAULT_LINK_COLOR

    def _update_link(
        self,
        edge: Edge,
        settings: FormatSettings,
        colors: ColorContext,
        centers: Mapping[str, Tuple[float, float]],
        radii: Mapping[str, float],
        max_weight: float,
    ) -> None:
        path = self._links[edge.key]
        if edge.is_self_loop:
            path.set("d", self_loop_path(centers[edge.source], radii[edge.source]))
        else:
            offset = 0.0
            if edge.parallel_count > 1:
                offset = (edge.ordinal - (edge.parallel_count - 1) / 2.0) * PARALLEL_OFFSET
                if edge.source > edge.target:
                    offset = -offset
            path.set(
                "d",
                straight_link_path(
                    centers[edge.source],
                    centers[edge.target],
                    radii[edge.source],
                    radii[edge.target],
                    offset,
                ),
            )
        width = MIN_LINK_WIDTH
        if settings.links.thicken_link and max_weight > 0 and edge.weight is not None:
            width += (MAX_LINK_WIDTH - MIN_LINK_WIDTH) * max(0.0, edge.weight) / max_weight
        path.set("fill", "none")
        path.set("stroke", self._link_color(edge, settings, colors, max_weight))
        path.set("stroke-width", _fmt(width))
        if settings.links.show_arrow:
            path.set("marker-end", f"url(#{ARROW_MARKER_ID})")
        elif "marker-end" in path.attrib:
            del path.attrib["marker-end"]
        if self._highlight is not None and edge.key not in self._highlight:
            path.set("stroke-opacity", FADED_OPACITY)
        elif "stroke-opacity" in path.attrib:
            del path.attrib["stroke-opacity"]

    def _update_link_labels(
        self, edges: Sequence[Edge], settings: FormatSettings, colors: ColorContext
    ) -> None:
        links = settings.links
        fill = colors.foreground if colors.is_high_contrast else settings.labels.color
        for edge in edges:
            if not links.show_label or edge.weight is None:
                self._link_labels.pop(edge.key, None)
                continue
            label = self._link_labels.get(edge.key)
            if label is None:
                label = ET.Element(_q("text"), {"class": "linklabel"})
                ET.SubElement(
                    label,
                    _q("textPath"),
                    {
                        "href": f"#{self._link_ids[edge.key]}",
                        "startOffset": "50%",
                        "text-anchor": "middle",
                    },
                )
                self._link_labels[edge.key] = label
            label.set("dy", "-3")
            label.set("style", _style(fill=fill, font_size=_px(settings.labels.font_size_px)))
            label[0].text = format_number(
                edge.weight,
                display_units=links.display_units,
                decimal_places=links.decimal_places,
            )

    def _visible_labels(
        self,
        nodes: Sequence[Node],
        settings: FormatSettings,
        centers: Mapping[str, Tuple[float, float]],
        radii: Mapping[str, float],
    ) -> Set[str]:
        if not settings.labels.show:
            return set()
        if settings.labels.allow_intersection:
            return {node.id for node in nodes}
        size = settings.labels.font_size_px
        placed: List[Tuple[float, float, float, float]] = []
        visible: Set[str] = set()
        for node in nodes:
            text = truncate(node.label, settings.nodes.name_max_length)
            width, height = self.measurer.measure(text, size)
            cx, cy = centers[node.id]
            left = cx + radii[node.id] + LABEL_GAP
            box = (left, cy - height / 2.0, left + width, cy + height / 2.0)
            if any(_boxes_overlap(box, other) for other in placed):
                continue
            placed.append(box)
            visible.add(node.id)
        return visible

    def _update_node(
        self,
        node: Node,
        settings: FormatSettings,
        colors: ColorContext,
        center: Tuple[float, float],
        radius: float,
        show_label: bool,
    ) -> None:
        shape = self._nodes[node.id]
        shape.group.set("transform", f"translate({_fmt(center[0])}, {_fmt(center[1])})")
        fill = colors.foreground if colors.is_high_contrast else settings.nodes.fill
        stroke = colors.background if colors.is_high_contrast else settings.nodes.stroke
        shape.circle.set("r", _fmt(radius))
        shape.circle.set("fill", fill)
        shape.circle.set("stroke", stroke)
        shape.circle.set("stroke-width", "1.5")

        if settings.nodes.display_image and node.image:
            if shape.image is None:
                shape.image = ET.Element(_q("image"))
                shape.group.insert(1, shape.image)
            size = 2.0 * radius + 4.0
            shape.image.set("href", node.image)
            shape.image.set("title", node.label)
            shape.image.set("x", _fmt(-size / 2.0))
            shape.image.set("y", _fmt(-size / 2.0))
            shape.image.set("width", _fmt(size))
            shape.image.set("height", _fmt(size))
        elif shape.image is not None:
            shape.group.remove(shape.image)
            shape.image = None

        if show_label:
            if shape.text is None:
                shape.text = ET.SubElement(shape.group, _q("text"), {"class": "nodelabel"})
            label_fill = colors.foreground if colors.is_high_contrast else settings.labels.color
            shape.text.set("x", _fmt(radius + LABEL_GAP))
            shape.text.set("dy", ".35em")
            shape.text.set(
                "style", _style(fill=label_fill, font_size=_px(settings.labels.font_size_px))
            )
            shape.text.text = truncate(node.label, settings.nodes.name_max_length)
        elif shape.text is not None:
            shape.group.remove(shape.text)
            shape.text = None


def _boxes_overlap(
    a: Tuple[float, float, float, float], b: Tuple[float, float, float, float]
) -> bool:
    return a[0] < b[2] and b[0] < a[2] and a[1] < b[3] and b[1] < a[3]
