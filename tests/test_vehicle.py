import math
import random

import pytest

from drivethru.errors import ConfigurationError
from drivethru.network import ServiceType, Waypoint, WaypointGraph
from drivethru.policies import STATIONARY_ONLY
from drivethru.spatial import SpatialIndex
from drivethru.vehicle import AgentState, VehicleAgent, VehicleParams

UP = math.pi / 2


class FakeFacility:
    """Hands out a fixed service time and records termination notices."""

    def __init__(self, duration=1.0):
        self.duration = duration
        self.terminated = []

    def service_time(self, service_type):
        return self.duration

    def on_agent_terminated(self, agent_id):
        self.terminated.append(agent_id)


def _stop_graph():
    stop = Waypoint("stop", (0.0, 2.0), is_stop_point=True, service_type=ServiceType.ORDER)
    end = Waypoint("end", (0.0, 4.0))
    stop.next_waypoints.append(end)
    return WaypointGraph([stop, end], "stop")


def _open_road():
    far = Waypoint("far", (0.0, 50.0))
    return WaypointGraph([far], "far")


def _car(aid, position, graph, index, facility=None, waypoint=None, **params):
    params.setdefault("stop_distance", 0.3)
    car = VehicleAgent(
        aid, VehicleParams(**params), position, UP, waypoint or graph.initial,
        graph, index, random.Random(aid), facility=facility,
    )
    index.insert(car)
    return car


def test_missing_initial_waypoint_refuses_activation():
    with pytest.raises(ConfigurationError):
        VehicleAgent(1, VehicleParams(), (0.0, 0.0), UP, None, _open_road(), SpatialIndex(), random.Random(0))


def test_unknown_queue_policy_rejected():
    with pytest.raises(ConfigurationError):
        VehicleParams(queue_policy="polite")


def test_travels_along_heading():
    index = SpatialIndex()
    car = _car(1, (0.0, 0.0), _open_road(), index)

    car.tick(0.1)

    assert car.state is AgentState.TRAVELING
    assert car.position[0] == pytest.approx(0.0, abs=1e-9)
    assert car.position[1] == pytest.approx(0.2)
    assert not car.is_stationary


def test_heading_turns_smoothly_toward_waypoint():
    index = SpatialIndex()
    side = WaypointGraph([Waypoint("side", (10.0, 0.0))], "side")
    car = _car(1, (0.0, 0.0), side, index, rotation_speed=5.0)

    car.tick(0.1)

    # half of the 90 degree turn at rotation_speed * dt = 0.5
    assert car.heading == pytest.approx(math.pi / 4)


class TestServiceStops:

    def test_waits_once_per_visit(self):
        index = SpatialIndex()
        graph = _stop_graph()
        facility = FakeFacility(duration=1.0)
        car = _car(1, (0.0, 2.0), graph, index, facility=facility)
        # parked car in the queue slot keeps us at the stop after service
        _car(2, (0.0, 3.0), graph, index, waypoint=graph["end"])

        car.tick(0.1)
        assert car.state is AgentState.WAITING_FOR_SERVICE
        assert car.remaining_wait_time == pytest.approx(1.0)

        for _ in range(10):
            car.tick(0.1)
        # service over, still at the stop and blocked by the queue
        assert car.state is AgentState.TRAVELING
        assert car.has_waited_at_current_stop
        assert car.current_waypoint is graph["stop"]
        assert car.blocked_by == "queue"
        assert car.position == pytest.approx((0.0, 2.0))

        entries = 0
        previous = car.state
        for _ in range(30):
            car.tick(0.1)
            if car.state is AgentState.WAITING_FOR_SERVICE and previous is not AgentState.WAITING_FOR_SERVICE:
                entries += 1
            previous = car.state
        assert entries == 0
        assert car.current_waypoint is graph["end"]
        assert not car.has_waited_at_current_stop

    def test_no_facility_means_zero_wait(self):
        index = SpatialIndex()
        graph = _stop_graph()
        car = _car(1, (0.0, 2.0), graph, index)

        car.tick(0.1)
        assert car.state is AgentState.WAITING_FOR_SERVICE
        assert car.remaining_wait_time == 0.0

        car.tick(0.1)
        assert car.state is AgentState.TRAVELING
        assert car.current_waypoint is graph["end"]
        assert car.position[1] == pytest.approx(2.2)


class TestTermination:

    def test_terminal_waypoint_notifies_once(self):
        index = SpatialIndex()
        graph = _stop_graph()
        facility = FakeFacility()
        car = _car(7, (0.0, 4.0), graph, index, facility=facility, waypoint=graph["end"])

        car.tick(0.1)
        car.tick(0.1)
        car.despawn()

        assert car.state is AgentState.TERMINATED
        assert facility.terminated == [7]

    def test_despawn_notifies_once(self):
        index = SpatialIndex()
        facility = FakeFacility()
        car = _car(3, (0.0, 0.0), _open_road(), index, facility=facility)

        car.despawn()
        car.despawn()
        car.tick(0.1)

        assert facility.terminated == [3]
        assert car.position == pytest.approx((0.0, 0.0))

    def test_explicit_callback_overrides_facility(self):
        seen = []
        graph = _stop_graph()
        car = VehicleAgent(
            4, VehicleParams(stop_distance=0.3), (0.0, 4.0), UP, graph["end"],
            graph, SpatialIndex(), random.Random(0), on_terminated=seen.append,
        )
        car.tick(0.1)
        assert seen == [4]


class TestCollisionCone:

    def test_car_ahead_triggers_traffic_wait(self):
        index = SpatialIndex()
        road = _open_road()
        car = _car(1, (0.0, 0.0), road, index)
        _car(2, (0.0, 0.6), road, index)

        car.tick(0.1)

        assert car.state is AgentState.WAITING_FOR_TRAFFIC
        assert car.remaining_wait_time == pytest.approx(0.5)
        assert car.blocked_by == "cone"
        assert car.position == pytest.approx((0.0, 0.0))

    def test_car_beside_is_ignored(self):
        index = SpatialIndex()
        road = _open_road()
        car = _car(1, (0.0, 0.0), road, index)
        _car(2, (0.6, 0.0), road, index)

        car.tick(0.1)

        assert car.state is AgentState.TRAVELING
        assert car.position[1] == pytest.approx(0.2)

    def test_zero_cone_only_probes_straight_ahead(self):
        index = SpatialIndex()
        road = _open_road()
        car = _car(1, (0.0, 0.0), road, index, cone_angle=0.0)
        _car(2, (0.3, 0.5), road, index)

        car.tick(0.1)

        # off-axis car is outside the degenerate cone; the queue slot still holds us
        assert car.state is AgentState.TRAVELING
        assert car.blocked_by == "queue"

    def test_expired_wait_rearms_while_blocked(self):
        index = SpatialIndex()
        road = _open_road()
        car = _car(1, (0.0, 0.0), road, index)
        blocker = _car(2, (0.0, 0.6), road, index)

        for _ in range(6):
            car.tick(0.1)
        assert car.state is AgentState.WAITING_FOR_TRAFFIC
        assert car.remaining_wait_time == pytest.approx(0.5)

        index.remove(blocker)
        for _ in range(5):
            car.tick(0.1)
        assert car.state is AgentState.TRAVELING
        assert car.position[1] > 0.0


class TestContacts:

    def test_contact_forces_brake(self):
        index = SpatialIndex()
        road = _open_road()
        car = _car(1, (0.0, 0.0), road, index)
        other = _car(2, (5.0, 5.0), road, index)

        car.notify_contact(other, "vehicle")
        car.tick(0.1)

        assert car.state is AgentState.WAITING_FOR_TRAFFIC
        assert car.remaining_wait_time == pytest.approx(0.5)
        assert car.blocked_by == "contact"
        assert car.position == pytest.approx((0.0, 0.0))

    def test_contact_from_self_or_other_layer_ignored(self):
        index = SpatialIndex()
        road = _open_road()
        car = _car(1, (0.0, 0.0), road, index)
        other = _car(2, (5.0, 5.0), road, index)

        car.notify_contact(car, "vehicle")
        car.notify_contact(other, "pedestrian")
        car.tick(0.1)

        assert car.state is AgentState.TRAVELING
        assert car.position[1] == pytest.approx(0.2)

    def test_contact_during_service_keeps_remaining_service(self):
        index = SpatialIndex()
        graph = _stop_graph()
        car = _car(1, (0.0, 2.0), graph, index, facility=FakeFacility(duration=1.0))
        other = _car(2, (5.0, 5.0), graph, index)

        car.tick(0.1)
        car.notify_contact(other, "vehicle")
        car.tick(0.1)
        assert car.state is AgentState.WAITING_FOR_TRAFFIC

        for _ in range(5):
            car.tick(0.1)
        assert car.state is AgentState.WAITING_FOR_SERVICE
        assert car.remaining_wait_time == pytest.approx(0.9)
        assert not car.has_waited_at_current_stop


class TestQueueing:

    def test_follower_holds_behind_waiting_car(self):
        index = SpatialIndex()
        graph = _stop_graph()
        facility = FakeFacility(duration=5.0)
        leader = _car(1, (0.0, 2.0), graph, index, facility=facility)
        follower = _car(2, (0.0, 0.8), graph, index, facility=facility)

        for _ in range(30):
            leader.tick(0.1)
            follower.tick(0.1)
            assert follower.position == pytest.approx((0.0, 0.8))
            assert follower.blocked_by == "queue"
            assert follower.is_stationary
        assert leader.state is AgentState.WAITING_FOR_SERVICE

        for _ in range(60):
            leader.tick(0.1)
            follower.tick(0.1)
            gap = math.dist(leader.position, follower.position)
            assert gap >= leader.footprint_radius + follower.footprint_radius
        assert follower.position[1] > 0.8

    @pytest.mark.parametrize("policy,moves", [("conservative", False), (STATIONARY_ONLY, True)])
    def test_moving_leader_blocks_only_under_conservative_policy(self, policy, moves):
        index = SpatialIndex()
        road = _open_road()
        leader = _car(1, (0.0, 1.5), road, index)
        follower = _car(2, (0.0, 0.5), road, index, queue_policy=policy)

        leader.tick(0.1)
        follower.tick(0.1)

        assert not leader.is_stationary
        assert (follower.position[1] > 0.5) is moves


def test_frozen_agent_stops_ticking():
    index = SpatialIndex()
    car = _car(1, (0.0, 0.0), _open_road(), index)

    car.freeze()
    car.tick(0.1)

    assert car.position == pytest.approx((0.0, 0.0))
    assert car.state is AgentState.TRAVELING
