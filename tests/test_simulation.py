from __future__ import annotations

import asyncio
import math
import unittest

from visual_data import VisualData

from forcegraph.graph import GraphBuilder, InputRow, rows_from_data_view
from forcegraph.simulation import (
    AsyncioScheduler,
    ForceSimulation,
    ManualScheduler,
    SimulationConfig,
    SimulationState,
)


def _graph():
    return GraphBuilder().build(rows_from_data_view(VisualData().get_data_view()))


class ForceSimulationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.graph = _graph()
        self.scheduler = ManualScheduler()
        self.simulation = ForceSimulation(SimulationConfig(width=1000, height=500), self.scheduler)
        self.radii = {node_id: 6.0 for node_id in self.graph.nodes}

    def _reset(self, previous=None) -> None:
        self.simulation.reset(
            list(self.graph.nodes.values()), self.graph.edges, radii=self.radii, previous=previous
        )

    def test_reset_initializes_deterministic_scatter(self) -> None:
        self._reset()
        self.assertIs(self.simulation.state, SimulationState.INITIALIZING)
        self.assertEqual(self.simulation.alpha, 1.0)
        first = self.simulation.snapshot()
        self._reset()
        self.assertEqual(self.simulation.snapshot(), first)
        self.assertEqual(len(set(first.values())), len(first))
        for node in self.graph.nodes.values():
            self.assertEqual((node.vx, node.vy), (0.0, 0.0))

    def test_reset_reuses_prior_positions(self) -> None:
        self._reset(previous={"Alpha": (12.0, 34.0)})
        self.assertEqual(self.simulation.snapshot()["Alpha"], (12.0, 34.0))

    def test_run_to_completion_converges(self) -> None:
        self._reset()
        ticks = self.simulation.run_to_completion()
        self.assertIs(self.simulation.state, SimulationState.STOPPED)
        self.assertLess(self.simulation.alpha, self.simulation.config.alpha_min)
        self.assertLess(ticks, self.simulation.config.max_iterations)
        for x, y in self.simulation.snapshot().values():
            self.assertTrue(math.isfinite(x) and math.isfinite(y))

    def test_iteration_cap_bounds_non_convergence(self) -> None:
        self.simulation.config.max_iterations = 25
        self._reset()
        self.simulation.alpha_target = 0.5
        ticks = self.simulation.run_to_completion()
        self.assertEqual(ticks, 25)
        self.assertIs(self.simulation.state, SimulationState.STOPPED)

    def test_nodes_do_not_overlap_after_settling(self) -> None:
        self._reset()
        self.simulation.run_to_completion()
        positions = list(self.simulation.snapshot().values())
        for i, (ax, ay) in enumerate(positions):
            for bx, by in positions[i + 1:]:
                self.assertGreater(math.hypot(ax - bx, ay - by), 6.0)

    def test_centroid_stays_near_canvas_center(self) -> None:
        self._reset()
        self.simulation.run_to_completion()
        positions = self.simulation.snapshot().values()
        mean_x = sum(x for x, _ in positions) / len(positions)
        mean_y = sum(y for _, y in positions) / len(positions)
        self.assertAlmostEqual(mean_x, 500.0, delta=5.0)
        self.assertAlmostEqual(mean_y, 250.0, delta=5.0)

    def test_bounded_box_keeps_nodes_inside(self) -> None:
        self.simulation.config.bounded = True
        self.simulation.config.width = 60
        self.simulation.config.height = 40
        self._reset()
        self.simulation.run_to_completion()
        for x, y in self.simulation.snapshot().values():
            self.assertTrue(6.0 <= x <= 54.0)
            self.assertTrue(6.0 <= y <= 34.0)

    def test_self_loop_exerts_no_link_force(self) -> None:
        graph = GraphBuilder().build([InputRow("solo", "solo", 10.0)])
        self.simulation.reset(list(graph.nodes.values()), graph.edges, radii={"solo": 6.0})
        self.assertEqual(self.simulation._links, [])
        self.simulation.run_to_completion()
        solo = graph.nodes["solo"]
        self.assertEqual((solo.vx, solo.vy), (0.0, 0.0))
        self.assertAlmostEqual(solo.x, 500.0, places=3)
        self.assertAlmostEqual(solo.y, 250.0, places=3)

    def test_pinned_node_holds_position_but_pushes_others(self) -> None:
        self._reset()
        self.simulation.pin("Alpha", 100.0, 100.0)
        self.simulation.run_to_completion()
        self.assertEqual(self.simulation.snapshot()["Alpha"], (100.0, 100.0))
        alpha = self.graph.nodes["Alpha"]
        self.assertTrue(alpha.pinned)
        self.simulation.unpin("Alpha")
        self.assertFalse(alpha.pinned)

    def test_pins_queue_until_next_tick_while_running(self) -> None:
        self._reset()
        self.simulation.start()
        self.simulation.pin("Beta", 1.0, 2.0)
        self.simulation.pin("Beta", 3.0, 4.0)
        self.assertNotEqual(self.simulation.snapshot()["Beta"], (3.0, 4.0))
        self.scheduler.step()
        self.assertEqual(self.simulation.snapshot()["Beta"], (3.0, 4.0))

    def test_scheduled_ticks_emit_in_order_then_end(self) -> None:
        ticks = []
        ends = []
        self.simulation.on_tick(lambda snapshot: ticks.append(self.simulation.iterations))
        self.simulation.on_end(lambda snapshot: ends.append(dict(snapshot)))
        self._reset()
        self.simulation.start()
        self.assertIs(self.simulation.state, SimulationState.RUNNING)
        self.assertEqual(self.scheduler.pending, 1)
        self.scheduler.run()
        self.assertEqual(ticks, list(range(1, len(ticks) + 1)))
        self.assertEqual(len(ends), 1)
        self.assertEqual(ends[0], self.simulation.snapshot())
        self.assertIs(self.simulation.state, SimulationState.STOPPED)

    def test_reset_cancels_in_flight_frames(self) -> None:
        ticks = []
        self.simulation.on_tick(lambda snapshot: ticks.append(set(snapshot)))
        self._reset()
        self.simulation.start()
        stale_frames = ManualScheduler()
        stale_frames._queue.extend(self.scheduler._queue)
        graph = GraphBuilder().build([InputRow("x", "y", 1.0)])
        self.simulation.reset(list(graph.nodes.values()), graph.edges, radii={"x": 6.0, "y": 6.0})
        self.assertEqual(self.scheduler.pending, 0)
        stale_frames.run()
        self.assertEqual(ticks, [])
        self.simulation.start()
        self.scheduler.step()
        self.assertEqual(ticks, [{"x", "y"}])

    def test_tick_listener_restart_keeps_single_frame(self) -> None:
        restarted = []

        def restart_once(snapshot) -> None:
            if not restarted:
                restarted.append(True)
                self.simulation.start()

        self.simulation.on_tick(restart_once)
        self._reset()
        self.simulation.start()
        self.scheduler.step()
        self.assertEqual(restarted, [True])
        self.assertEqual(self.scheduler.pending, 1)
        self.simulation.stop()
        self.assertEqual(self.scheduler.pending, 0)
        self.assertIs(self.simulation.state, SimulationState.STOPPED)

    def test_reheat_restarts_stopped_simulation(self) -> None:
        self._reset()
        self.simulation.run_to_completion()
        self.simulation.reheat(0.3)
        self.assertIs(self.simulation.state, SimulationState.RUNNING)
        self.scheduler.step()
        self.assertGreater(self.simulation.alpha, self.simulation.config.alpha_min)
        self.simulation.stop()
        self.assertEqual(self.scheduler.pending, 0)

    def test_handles_empty_and_single_node(self) -> None:
        self.simulation.reset([], [])
        self.assertEqual(self.simulation.run_to_completion() > 0, True)
        graph = GraphBuilder().build([InputRow("only", "only")])
        self.simulation.reset(list(graph.nodes.values()), graph.edges)
        self.simulation.run_to_completion()
        self.assertIn("only", self.simulation.snapshot())

    def test_coincident_nodes_separate(self) -> None:
        graph = GraphBuilder().build([InputRow("a", "b"), InputRow("c", "d")])
        nodes = list(graph.nodes.values())
        self.simulation.reset(nodes, graph.edges, radii={node.id: 6.0 for node in nodes})
        for node in nodes:
            node.x, node.y = 500.0, 250.0
        self.simulation.run_to_completion()
        positions = list(self.simulation.snapshot().values())
        self.assertEqual(len(set(positions)), len(positions))


class AsyncioSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_runs_until_converged_on_event_loop(self) -> None:
        graph = _graph()
        simulation = ForceSimulation(
            SimulationConfig(max_iterations=40), AsyncioScheduler(frame_interval=0.0)
        )
        done = asyncio.get_running_loop().create_future()
        ticks = []
        simulation.on_tick(lambda snapshot: ticks.append(len(snapshot)))
        simulation.on_end(lambda snapshot: done.set_result(snapshot))
        simulation.reset(list(graph.nodes.values()), graph.edges)
        simulation.start()
        snapshot = await asyncio.wait_for(done, timeout=10)
        self.assertEqual(len(ticks), 40)
        self.assertEqual(set(snapshot), set(graph.nodes))
        self.assertIs(simulation.state, SimulationState.STOPPED)


if __name__ == "__main__":
    unittest.main()
