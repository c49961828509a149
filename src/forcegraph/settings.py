"""Format settings: explicit structs parsed from host ``objects`` payloads."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Mapping, Optional

from .colors import solid_color
from .formatting import SUPPORTED_DISPLAY_UNITS

LOGGER = logging.getLogger(__name__)

POINTS_TO_PIXELS = 4.0 / 3.0
MAX_DECIMAL_PLACES = 10
COLOR_LINK_MODES = ("interactive", "byWeight", "byLinkType")


def _setting(key: str, default: Any, kind: str, **extra: Any) -> Any:
    metadata = {"key": key, "kind": kind, **extra}
    return field(default=default, metadata=metadata)


@dataclass
class AnimationSettings:
    show: bool = _setting("show", True, "bool")


@dataclass
class LabelSettings:
    show: bool = _setting("show", True, "bool")
    color: str = _setting("color", "#777777", "color")
    font_size: float = _setting("fontSize", 9.0, "number", minimum=1.0)
    allow_intersection: bool = _setting("allowIntersection", True, "bool")

    @property
    def font_size_px(self) -> float:
        return self.font_size * POINTS_TO_PIXELS


@dataclass
class LinkSettings:
    show_arrow: bool = _setting("showArrow", False, "bool")
    show_label: bool = _setting("showLabel", False, "bool")
    color_link: str = _setting("colorLink", "interactive", "enum", choices=COLOR_LINK_MODES)
    thicken_link: bool = _setting("thickenLink", True, "bool")
    display_units: int = _setting("displayUnits", 0, "units")
    decimal_places: Optional[int] = _setting(
        "decimalPlaces", None, "int", minimum=0, maximum=MAX_DECIMAL_PLACES
    )


@dataclass
class NodeSettings:
    display_image: bool = _setting("displayImage", False, "bool")
    default_image: str = _setting("defaultImage", "Home", "text")
    image_url: str = _setting("imageUrl", "", "text")
    image_ext: str = _setting("imageExt", ".png", "text")
    name_max_length: int = _setting("nameMaxLength", 10, "int", minimum=1)
    highlight_reachable_links: bool = _setting("highlightReachableLinks", False, "bool")
    fill: str = _setting("fill", "#01b8aa", "color")
    stroke: str = _setting("stroke", "#ffffff", "color")
    radius: float = _setting("radius", 6.0, "number", minimum=1.0)
    scale_by_degree: bool = _setting("scaleByDegree", False, "bool")

    def radius_for(self, degree: int) -> float:
        if not self.scale_by_degree or degree <= 1:
            return self.radius
        return self.radius * (1.0 + 0.25 * math.log2(degree))


@dataclass
class SizeSettings:
    charge: float = _setting("charge", -15.0, "number", minimum=-100.0, maximum=-0.1)
    bounded_by_box: bool = _setting("boundedByBox", False, "bool")


@dataclass
class FormatSettings:
    animation: AnimationSettings = field(default_factory=AnimationSettings)
    labels: LabelSettings = field(default_factory=LabelSettings)
    links: LinkSettings = field(default_factory=LinkSettings)
    nodes: NodeSettings = field(default_factory=NodeSettings)
    size: SizeSettings = field(default_factory=SizeSettings)

    @classmethod
    def from_objects(cls, objects: Optional[Mapping[str, Any]]) -> "FormatSettings":
        """Parse a host ``{object: {property: value}}`` payload.

        Missing objects or properties keep their defaults; malformed values
        are logged and ignored.
        """
        settings = cls()
        if not isinstance(objects, Mapping):
            return settings
        for group_field in fields(cls):
            raw_group = objects.get(group_field.name)
            if not isinstance(raw_group, Mapping):
                continue
            group = getattr(settings, group_field.name)
            for prop in fields(group):
                key = prop.metadata["key"]
                if key not in raw_group:
                    continue
                parsed = _coerce(prop.metadata, raw_group[key])
                if parsed is _INVALID:
                    LOGGER.warning(
                        "Ignoring invalid value %r for %s.%s", raw_group[key], group_field.name, key
                    )
                    continue
                setattr(group, prop.name, parsed)
        return settings


def settings_keys() -> List[str]:
    """Every ``object.property`` key read from the host payload."""
    keys: List[str] = []
    for group_field in fields(FormatSettings):
        group_type = group_field.default_factory  # type: ignore[misc]
        for prop in fields(group_type):
            keys.append(f"{group_field.name}.{prop.metadata['key']}")
    return keys


_INVALID = object()


def _coerce_bool(meta: Mapping[str, Any], value: Any) -> Any:
    return value if isinstance(value, bool) else _INVALID


def _coerce_number(meta: Mapping[str, Any], value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _INVALID
    if not math.isfinite(value):
        return _INVALID
    value = float(value)
    if "minimum" in meta:
        value = max(meta["minimum"], value)
    if "maximum" in meta:
        value = min(meta["maximum"], value)
    return value


def _coerce_int(meta: Mapping[str, Any], value: Any) -> Any:
    if value is None:
        return None
    number = _coerce_number(meta, value)
    if number is _INVALID:
        return _INVALID
    return int(round(number))


def _coerce_units(meta: Mapping[str, Any], value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _INVALID
    if value not in SUPPORTED_DISPLAY_UNITS:
        return _INVALID
    return int(value)


def _coerce_color(meta: Mapping[str, Any], value: Any) -> Any:
    color = solid_color(value)
    return color if color is not None else _INVALID


def _coerce_text(meta: Mapping[str, Any], value: Any) -> Any:
    return value if isinstance(value, str) else _INVALID


def _coerce_enum(meta: Mapping[str, Any], value: Any) -> Any:
    return value if value in meta["choices"] else _INVALID


_COERCERS: Dict[str, Callable[[Mapping[str, Any], Any], Any]] = {
    "bool": _coerce_bool,
    "number": _coerce_number,
    "int": _coerce_int,
    "units": _coerce_units,
    "color": _coerce_color,
    "text": _coerce_text,
    "enum": _coerce_enum,
}


def _coerce(meta: Mapping[str, Any], value: Any) -> Any:
    return _COERCERS[meta["kind"]](meta, value)
