"""Public API for forcegraph."""
from .colors import ColorContext
from .columns import ColumnDescriptor, ColumnType, DataView, MetadataRoleHelper, get_column_by_role_name
from .graph import Edge, Graph, GraphBuilder, InputRow, Node, WeightPolicy, rows_from_data_view
from .renderer import SceneRenderer
from .settings import FormatSettings
from .simulation import AsyncioScheduler, ForceSimulation, ManualScheduler, SimulationConfig, SimulationState
from .tooltips import TooltipItem, TooltipsFactory
from .visual import ForceGraph

__all__ = [
    "AsyncioScheduler",
    "ColorContext",
    "ColumnDescriptor",
    "ColumnType",
    "DataView",
    "Edge",
    "ForceGraph",
    "ForceSimulation",
    "FormatSettings",
    "Graph",
    "GraphBuilder",
    "InputRow",
    "ManualScheduler",
    "MetadataRoleHelper",
    "Node",
    "SceneRenderer",
    "SimulationConfig",
    "SimulationState",
    "TooltipItem",
    "TooltipsFactory",
    "WeightPolicy",
    "get_column_by_role_name",
    "rows_from_data_view",
]
