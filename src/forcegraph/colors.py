"""Theme colors and the high-contrast accessibility palette."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, Optional, Tuple

DEFAULT_PALETTE: Tuple[str, ...] = (
    "#01b8aa",
    "#374649",
    "#fd625e",
    "#f2c80f",
    "#5f6b6d",
    "#8ad4eb",
    "#fe9666",
    "#a66999",
    "#3599b8",
    "#dfbfbf",
)

DEFAULT_LINK_COLOR = "#bbbbbb"
WEIGHT_LIGHT = (0xDD, 0xDD, 0xDD)
WEIGHT_DARK = (0x33, 0x33, 0x33)


@dataclass
class ColorContext:
    """Colors supplied by the host theme.

    When ``is_high_contrast`` is set every visible fill and stroke is drawn
    from ``foreground`` and ``background`` only.
    """

    is_high_contrast: bool = False
    background: str = "#ffffff"
    foreground: str = "#000000"
    palette: Tuple[str, ...] = DEFAULT_PALETTE
    _assigned: Dict[Hashable, str] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def high_contrast(cls, background: str, foreground: str) -> "ColorContext":
        return cls(is_high_contrast=True, background=background, foreground=foreground)

    def color_for(self, key: Hashable) -> str:
        """Stable palette color per key, assigned in first-seen order."""
        if self.is_high_contrast:
            return self.foreground
        if key not in self._assigned:
            self._assigned[key] = self.palette[len(self._assigned) % len(self.palette)]
        return self._assigned[key]


def interpolate_weight_color(ratio: float) -> str:
    ratio = min(1.0, max(0.0, ratio))
    channels = [
        round(light + (dark - light) * ratio) for light, dark in zip(WEIGHT_LIGHT, WEIGHT_DARK)
    ]
    return "#" + "".join(f"{channel:02x}" for channel in channels)


def solid_color(value: object) -> Optional[str]:
    """Accept ``"#rrggbb"`` or the structural ``{"solid": {"color": ...}}`` form."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        solid = value.get("solid")
        if isinstance(solid, dict) and isinstance(solid.get("color"), str):
            return solid["color"]
    return None
