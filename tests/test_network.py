import logging
import random

import pytest

from drivethru.errors import ConfigurationError
from drivethru.network import ServiceType, Waypoint, WaypointGraph


def _lane_cfg(**extra):
    cfg = {
        "initial": "entry",
        "waypoints": [
            {"id": "entry", "position": [0, 0], "next": ["menu"]},
            {"id": "menu", "position": [0, 5], "stop": True, "service": "order", "next": ["left", "right"]},
            {"id": "left", "position": [-2, 8], "next": ["exit"]},
            {"id": "right", "position": [2, 8], "next": ["exit"]},
            {"id": "exit", "position": [0, 12]},
        ],
    }
    cfg.update(extra)
    return cfg


def test_from_config_builds_topology():
    graph = WaypointGraph.from_config(_lane_cfg())

    assert len(graph) == 5
    assert graph.initial is graph["entry"]
    menu = graph["menu"]
    assert menu.is_stop_point
    assert menu.service_type is ServiceType.ORDER
    assert [wp.wid for wp in graph.next(menu)] == ["left", "right"]
    assert graph["exit"].is_terminal
    assert graph["entry"].service_type is ServiceType.NONE


def test_choose_next_terminal_returns_none():
    graph = WaypointGraph.from_config(_lane_cfg())
    rng = random.Random(0)

    assert graph.choose_next(graph["exit"], rng) is None
    assert graph.choose_next(graph["entry"], rng) is graph["menu"]


def test_branch_choice_is_roughly_uniform():
    graph = WaypointGraph.from_config(_lane_cfg())
    rng = random.Random(11)
    menu = graph["menu"]

    picks = [graph.choose_next(menu, rng).wid for _ in range(4000)]

    share_left = picks.count("left") / len(picks)
    assert 0.45 < share_left < 0.55


def test_branch_paths_differ_between_seeds():
    graph = WaypointGraph.from_config(_lane_cfg())
    menu = graph["menu"]

    firsts = {graph.choose_next(menu, random.Random(seed)).wid for seed in range(20)}
    assert firsts == {"left", "right"}


def test_unknown_successor_rejected():
    cfg = _lane_cfg()
    cfg["waypoints"][0]["next"] = ["nowhere"]
    with pytest.raises(ConfigurationError):
        WaypointGraph.from_config(cfg)


def test_missing_initial_rejected():
    cfg = _lane_cfg(initial="ghost")
    with pytest.raises(ConfigurationError):
        WaypointGraph.from_config(cfg)


def test_duplicate_id_rejected():
    cfg = _lane_cfg()
    cfg["waypoints"].append({"id": "exit", "position": [1, 1]})
    with pytest.raises(ConfigurationError):
        WaypointGraph.from_config(cfg)


def test_unknown_service_rejected():
    cfg = _lane_cfg()
    cfg["waypoints"][1]["service"] = "dessert"
    with pytest.raises(ConfigurationError):
        WaypointGraph.from_config(cfg)


def test_acyclic_lane_has_no_cycle():
    graph = WaypointGraph.from_config(_lane_cfg())
    assert graph.find_cycle() is None


class TestCycles:

    def _loop_cfg(self, allow):
        return {
            "initial": "a",
            "allow_cycles": allow,
            "waypoints": [
                {"id": "a", "position": [0, 0], "next": ["b"]},
                {"id": "b", "position": [0, 1], "next": ["c", "exit"]},
                {"id": "c", "position": [1, 1], "next": ["a"]},
                {"id": "exit", "position": [0, 3]},
            ],
        }

    def test_cycle_is_reported(self):
        graph = WaypointGraph.from_config(self._loop_cfg(True))
        cycle = graph.find_cycle()
        assert [wp.wid for wp in cycle] == ["a", "b", "c", "a"]

    def test_cycle_warns_when_allowed(self, caplog):
        with caplog.at_level(logging.WARNING, logger="drivethru.network"):
            WaypointGraph.from_config(self._loop_cfg(True))
        assert "cycle" in caplog.text

    def test_cycle_rejected_when_disallowed(self):
        with pytest.raises(ConfigurationError):
            WaypointGraph.from_config(self._loop_cfg(False))


def test_graph_rejects_links_outside_itself():
    stray = Waypoint("stray", (5.0, 5.0))
    a = Waypoint("a", (0.0, 0.0), next_waypoints=[stray])
    with pytest.raises(ConfigurationError):
        WaypointGraph([a], "a")


def test_entry_without_id_rejected():
    cfg = _lane_cfg()
    del cfg["waypoints"][2]["id"]
    with pytest.raises(ConfigurationError, match="#2"):
        WaypointGraph.from_config(cfg)


@pytest.mark.parametrize("position", [[1.0], [1.0, 2.0, 3.0], ["a", 2.0], 5])
def test_malformed_position_rejected(position):
    cfg = _lane_cfg()
    cfg["waypoints"][2]["position"] = position
    with pytest.raises(ConfigurationError, match="left"):
        WaypointGraph.from_config(cfg)
