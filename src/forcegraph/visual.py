"""Force graph visual: wires data updates, simulation ticks and the scene."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from .colors import ColorContext
from .columns import DataView
from .graph import EdgeKey, Graph, WeightPolicy, builder_for_view, rows_from_data_view
from .renderer import SceneRenderer, TextMeasurer
from .resources import load_capabilities
from .settings import FormatSettings
from .simulation import (
    ForceSimulation,
    FrameScheduler,
    SimulationConfig,
    SimulationState,
    Snapshot,
)
from .tooltips import TooltipItem, build as build_tooltips

LOGGER = logging.getLogger(__name__)

DRAG_ALPHA_TARGET = 0.3


class ForceGraph:
    """One force graph instance bound to a drawing surface.

    ``update`` replaces the dataset wholesale: the in-flight simulation is
    cancelled, positions of surviving node ids are carried over, and the
    scene is reconciled on every tick until the layout settles.
    """

    def __init__(
        self,
        width: float = 1000.0,
        height: float = 500.0,
        *,
        scheduler: Optional[FrameScheduler] = None,
        weight_policy: WeightPolicy = WeightPolicy.SUM,
        measurer: Optional[TextMeasurer] = None,
        seed: int = 0,
    ) -> None:
        self.capabilities = load_capabilities()
        self.weight_policy = weight_policy
        self.renderer = SceneRenderer(width, height, measurer=measurer)
        self.simulation = ForceSimulation(
            SimulationConfig(width=width, height=height, seed=seed), scheduler=scheduler
        )
        self.simulation.on_tick(self._render_snapshot)
        self.simulation.on_end(self._render_snapshot)
        self.graph = Graph()
        self.data_view: Optional[DataView] = None
        self.settings = FormatSettings()
        self.color_context = ColorContext()
        self._positions: Dict[str, Tuple[float, float]] = {}
        self._hovered: Optional[str] = None

    @property
    def width(self) -> float:
        return self.renderer.width

    @property
    def height(self) -> float:
        return self.renderer.height

    def update(
        self,
        data_view: Optional[DataView],
        width: Optional[float] = None,
        height: Optional[float] = None,
        color_context: Optional[ColorContext] = None,
    ) -> None:
        if color_context is not None:
            self.color_context = color_context
        if width is not None and height is not None:
            self.renderer.resize(width, height)
            self.simulation.resize(width, height)

        self.data_view = data_view
        self.settings = FormatSettings.from_objects(data_view.objects if data_view else None)
        nodes_settings = self.settings.nodes
        builder = builder_for_view(
            data_view,
            self.weight_policy,
            image_url=nodes_settings.image_url,
            image_ext=nodes_settings.image_ext,
            default_image=nodes_settings.default_image,
        )
        self.graph = builder.build(rows_from_data_view(data_view))
        if self._hovered not in self.graph.nodes:
            self._hovered = None
        self.renderer.set_highlight(self._highlighted_edges())

        config = self.simulation.config
        config.charge = self.settings.size.charge
        config.bounded = self.settings.size.bounded_by_box
        radii = {
            node.id: nodes_settings.radius_for(node.degree) for node in self.graph.nodes.values()
        }
        self.simulation.reset(
            list(self.graph.nodes.values()),
            self.graph.edges,
            radii=radii,
            previous=self._positions,
        )

        if self.settings.animation.show:
            self._render_snapshot(self.simulation.snapshot())
            self.simulation.start()
        else:
            self.simulation.run_to_completion()
            self._render_snapshot(self.simulation.snapshot())

    def resize(self, width: float, height: float) -> None:
        self.renderer.resize(width, height)
        self.simulation.resize(width, height)
        self._render()

    def drag_start(self, node_id: str, x: float, y: float) -> None:
        self.simulation.pin(node_id, x, y)
        self.simulation.reheat(DRAG_ALPHA_TARGET)

    def drag(self, node_id: str, x: float, y: float) -> None:
        self.simulation.pin(node_id, x, y)
        if self.simulation.state is not SimulationState.RUNNING:
            self.simulation.reheat(DRAG_ALPHA_TARGET)

    def drag_end(self, node_id: str) -> None:
        self.simulation.unpin(node_id)
        self.simulation.reheat(0.0)

    def hover_node(self, node_id: str) -> None:
        if node_id not in self.graph.nodes:
            return
        self._hovered = node_id
        self.renderer.set_highlight(self._highlighted_edges())
        self._render()

    def clear_hover(self) -> None:
        self._hovered = None
        self.renderer.set_highlight(None)
        self._render()

    def link_tooltip(self, edge_key: EdgeKey) -> List[TooltipItem]:
        edge = self.graph.edge(edge_key)
        if edge is None:
            return []
        columns = self.data_view.columns if self.data_view else None
        return build_tooltips(edge.tooltip_info(self.graph.nodes), columns)

    def to_svg(self) -> str:
        return self.renderer.to_svg()

    def _highlighted_edges(self) -> Optional[Set[EdgeKey]]:
        if self._hovered is None:
            return None
        if self.settings.nodes.highlight_reachable_links:
            return self.graph.reachable_edges(self._hovered)
        return self.graph.adjacent_edges(self._hovered)

    def _render_snapshot(self, snapshot: Snapshot) -> None:
        self._positions = dict(snapshot)
        self._render()

    def _render(self) -> None:
        self.renderer.update(
            list(self.graph.nodes.values()),
            self.graph.edges,
            self.settings,
            self.color_context,
            positions=self._positions,
        )
