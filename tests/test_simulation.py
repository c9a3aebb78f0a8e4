"""
Tests for the CRDT replica simulator engine.

Tests cover time units, the delivery queue, replica polling, the simulator
tick, adapter-facing calls, metrics, configuration, and the live scheduler.
"""

import asyncio

import pytest

from crdtsim.simulation import (
    # Time units
    Milliseconds,
    seconds,
    minutes,
    # Errors
    UnknownReplicaError,
    OperationRejected,
    InvariantViolation,
    # Variants
    CounterOperation,
    CounterVariant,
    GridVariant,
    Paint,
    InsertText,
    NaiveTextVariant,
    SequenceTextVariant,
    VariantKind,
    # Events
    EventType,
    # Delivery
    DeliveryQueue,
    # Replica
    Replica,
    # Metrics
    MetricsCollector,
    # Simulator
    Simulator,
    # Config
    ReplicaSpec,
    SimulationConfig,
    build_simulator,
    # Scheduler
    DemoLauncher,
    start_simulation,
)
from crdtsim.settings import CONFIG_ENV_VAR, load_config


def make_counter_sim(*replicas: tuple[str, float], log_events: bool = False) -> Simulator:
    simulator = Simulator(CounterVariant(), log_events=log_events)
    for replica_id, delay in replicas:
        simulator.add_replica(replica_id, delay_ms=Milliseconds(delay))
    return simulator


# =============================================================================
# Time Unit Tests
# =============================================================================


class TestTimeUnits:
    def test_seconds_conversion(self):
        assert seconds(1) == 1000
        assert seconds(2.5) == 2500

    def test_minutes_conversion(self):
        assert minutes(1) == 60_000


# =============================================================================
# Delivery Queue Tests
# =============================================================================


class TestDeliveryQueue:
    def test_pop_due_returns_only_due_messages(self):
        queue = DeliveryQueue()
        queue.push("a", "op1", Milliseconds(10))
        queue.push("b", "op2", Milliseconds(50))

        due = queue.pop_due(Milliseconds(20))

        assert [m.operation for m in due] == ["op1"]
        assert len(queue) == 1
        assert queue.next_due_time() == 50

    def test_due_messages_flush_in_emission_order(self):
        """A later emission with an earlier due time still flushes second."""
        queue = DeliveryQueue()
        queue.push("slow", "first", Milliseconds(30))
        queue.push("fast", "second", Milliseconds(20))

        due = queue.pop_due(Milliseconds(30))

        assert [m.operation for m in due] == ["first", "second"]
        assert [m.sequence for m in due] == [0, 1]

    def test_due_time_is_inclusive(self):
        queue = DeliveryQueue()
        queue.push("a", "op", Milliseconds(10))
        assert len(queue.pop_due(Milliseconds(10))) == 1
        assert queue.is_empty()
        assert queue.next_due_time() is None


# =============================================================================
# Replica Tests
# =============================================================================


class TestReplica:
    def test_poll_drains_everything_then_emits_one(self):
        variant = CounterVariant()
        replica = Replica(replica_id="r", state=0)
        replica.receive(CounterOperation.INCREMENT)
        replica.receive(CounterOperation.INCREMENT)
        replica.submit(CounterOperation.DECREMENT, variant)
        replica.submit(CounterOperation.DECREMENT, variant)

        emitted = replica.poll(Milliseconds(10), variant.apply)

        assert emitted is CounterOperation.DECREMENT
        assert replica.state == 0  # -2 local, +2 received
        assert len(replica.inbound) == 0
        assert len(replica.pending) == 1
        assert replica.history == [(CounterOperation.DECREMENT, 10)]
        assert replica.applied_count == 2

    def test_disconnected_poll_is_a_noop(self):
        variant = CounterVariant()
        replica = Replica(replica_id="r", state=0, connected=False)
        replica.receive(CounterOperation.INCREMENT)
        replica.submit(CounterOperation.INCREMENT, variant)

        assert replica.poll(Milliseconds(10), variant.apply) is None
        assert replica.state == 1
        assert len(replica.inbound) == 1
        assert len(replica.pending) == 1
        assert replica.history == []

    def test_rejected_operation_does_not_stop_drain(self):
        variant = GridVariant(size=4)
        replica = Replica(replica_id="r", state=variant.initial_state("r"))
        replica.receive(Paint(9, 9, "red"))
        replica.receive(Paint(1, 2, "red"))
        rejected = []

        replica.drain(variant.apply, on_reject=lambda op, exc: rejected.append(op))

        assert rejected == [Paint(9, 9, "red")]
        assert replica.state[2, 1] == "red"
        assert replica.applied_count == 1


# =============================================================================
# Simulator Tests
# =============================================================================


class TestSimulatorStep:
    def test_operation_reaches_peer_on_following_tick(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        simulator.step(Milliseconds(10))
        assert simulator.get_replica("b").state == 0
        assert list(simulator.get_replica("b").inbound) == [CounterOperation.INCREMENT]

        simulator.step(Milliseconds(20))
        assert simulator.get_replica("b").state == 1
        assert simulator.clock_ms == 20

    def test_delay_holds_message_in_flight(self):
        simulator = make_counter_sim(("slow", 100), ("b", 0))
        simulator.submit_operation("slow", CounterOperation.INCREMENT)

        simulator.step(Milliseconds(10))
        simulator.step(Milliseconds(100))
        assert len(simulator.in_flight) == 1
        assert len(simulator.get_replica("b").inbound) == 0

        simulator.step(Milliseconds(110))
        assert simulator.in_flight.is_empty()
        assert len(simulator.get_replica("b").inbound) == 1

    def test_origin_never_receives_its_own_operation(self):
        simulator = make_counter_sim(("a", 0), ("b", 0), ("c", 0))
        simulator.submit_operation("a", CounterOperation.INCREMENT)
        simulator.run_until_quiescent(max_time=Milliseconds(1000))

        assert [r.state for r in simulator.replicas.values()] == [1, 1, 1]
        assert simulator.metrics.operations_delivered == 2

    def test_one_emission_per_tick(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        for _ in range(3):
            simulator.submit_operation("a", CounterOperation.INCREMENT)

        simulator.step(Milliseconds(10))

        assert len(simulator.get_replica("a").pending) == 2
        assert len(simulator.get_replica("a").history) == 1

    def test_time_cannot_go_backwards(self):
        simulator = make_counter_sim(("a", 0))
        simulator.step(Milliseconds(50))
        with pytest.raises(ValueError):
            simulator.step(Milliseconds(40))

    def test_delivery_ignores_recipient_connectivity(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        simulator.set_connectivity("b", False)
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        simulator.step(Milliseconds(10))

        assert len(simulator.get_replica("b").inbound) == 1
        assert simulator.get_replica("b").state == 0

    def test_snapshot_reports_replica_view(self):
        simulator = make_counter_sim(("a", 250), ("b", 0))
        simulator.set_connectivity("b", False)
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        snapshot = simulator.step(Milliseconds(10))

        a = snapshot.get("a")
        assert (a.state, a.connected, a.delay_ms) == (1, True, 250)
        assert snapshot.get("b").connected is False
        assert snapshot.in_flight == 1
        with pytest.raises(UnknownReplicaError):
            snapshot.get("zzz")


class TestOfflineBuffering:
    def test_reconnect_drains_in_arrival_order_before_emitting(self):
        simulator = Simulator(NaiveTextVariant())
        simulator.add_replica("a")
        simulator.add_replica("b")
        simulator.set_connectivity("b", False)

        simulator.submit_operation("a", InsertText(0, "a"))
        simulator.submit_operation("a", InsertText(0, "b"))
        simulator.submit_operation("b", InsertText(0, "z"))
        simulator.step(Milliseconds(10))
        simulator.step(Milliseconds(20))

        b = simulator.get_replica("b")
        assert b.state == "z"
        assert len(b.inbound) == 2
        assert len(b.pending) == 1

        simulator.set_connectivity("b", True)
        simulator.step(Milliseconds(30))

        # "a" then "b" inserted at 0 over "z"; reversed order would give "abz"
        assert b.state == "baz"
        assert b.history == [(InsertText(0, "z"), 30)]


class TestAdapterInterface:
    def test_unknown_replica_fails_fast(self):
        simulator = make_counter_sim(("a", 0))

        with pytest.raises(UnknownReplicaError):
            simulator.submit_operation("ghost", CounterOperation.INCREMENT)
        with pytest.raises(UnknownReplicaError):
            simulator.set_connectivity("ghost", False)
        with pytest.raises(KeyError):
            simulator.set_delay("ghost", Milliseconds(10))

        assert list(simulator.replicas) == ["a"]

    def test_duplicate_replica_is_a_contract_violation(self):
        simulator = make_counter_sim(("a", 0))
        with pytest.raises(InvariantViolation):
            simulator.add_replica("a")

    def test_negative_delay_rejected(self):
        simulator = make_counter_sim(("a", 0))
        with pytest.raises(ValueError):
            simulator.set_delay("a", Milliseconds(-1))
        with pytest.raises(ValueError):
            simulator.add_replica("b", delay_ms=Milliseconds(-5))

    def test_set_delay_applies_to_later_emissions(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        simulator.set_delay("a", Milliseconds(500))
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        simulator.step(Milliseconds(10))

        assert next(iter(simulator.in_flight)).due_at_ms == 510

    def test_local_rejection_propagates_to_caller(self):
        simulator = Simulator(GridVariant(size=4))
        simulator.add_replica("a")
        with pytest.raises(OperationRejected):
            simulator.submit_operation("a", Paint(4, 0, "red"))
        assert len(simulator.get_replica("a").pending) == 0

    def test_received_rejection_is_isolated(self):
        simulator = Simulator(GridVariant(size=4), log_events=True)
        for replica_id in ("a", "b", "c"):
            simulator.add_replica(replica_id)
        simulator.get_replica("b").receive(Paint(7, 7, "red"))
        simulator.submit_operation("c", Paint(0, 0, "blue"))

        simulator.run_until_quiescent(max_time=Milliseconds(1000))

        assert simulator.metrics.operations_rejected == 1
        assert all(r.state[0, 0] == "blue" for r in simulator.replicas.values())
        rejected = [e for e in simulator.event_log if e.event_type == EventType.OPERATION_REJECTED]
        assert [e.replica_id for e in rejected] == ["b"]

    def test_event_log_records_lifecycle(self):
        simulator = make_counter_sim(("a", 0), ("b", 0), log_events=True)
        simulator.submit_operation("a", CounterOperation.INCREMENT)
        simulator.run_until_quiescent(max_time=Milliseconds(100))

        types = [event.event_type for event in simulator.event_log]
        assert types == [
            EventType.OPERATION_SUBMITTED,
            EventType.OPERATION_EMITTED,
            EventType.OPERATION_DELIVERED,
        ]
        assert simulator.event_log[2].metadata["origin_id"] == "a"


class TestSimulatorDrivers:
    def test_run_until_replays_time_instantly(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        result = simulator.run_until(seconds(3600), tick_ms=Milliseconds(1000))

        assert result.end_reason == "time_limit"
        assert result.end_time == seconds(3600)

    def test_before_tick_injects_operations(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))

        def type_once(sim, now):
            if now == 50:
                sim.submit_operation("a", CounterOperation.INCREMENT)

        result = simulator.run_until(Milliseconds(200), before_tick=type_once)

        assert result.converged
        assert result.final_snapshot.get("b").state == 1

    def test_run_until_quiescent_stops_early(self):
        simulator = make_counter_sim(("a", 30), ("b", 0))
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        result = simulator.run_until_quiescent(max_time=seconds(10))

        assert result.end_reason == "quiescent"
        assert result.end_time == 50
        assert result.converged

    def test_offline_replica_blocks_quiescence(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        simulator.set_connectivity("b", False)
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        result = simulator.run_until_quiescent(max_time=Milliseconds(200))

        assert result.end_reason == "time_limit"
        assert not result.converged

    def test_invalid_tick_rejected(self):
        simulator = make_counter_sim(("a", 0))
        with pytest.raises(ValueError):
            simulator.run_until(Milliseconds(100), tick_ms=Milliseconds(0))

    def test_run_for_advances_by_duration(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        simulator.submit_operation("a", CounterOperation.INCREMENT)

        first = simulator.run_for(Milliseconds(200))
        second = simulator.run_for(Milliseconds(50), tick_ms=Milliseconds(25))

        assert (first.end_time, first.end_reason) == (200, "time_limit")
        assert first.converged
        assert second.end_time == 250


# =============================================================================
# Metrics Tests
# =============================================================================


class TestMetrics:
    def test_records_transitions_only(self):
        metrics = MetricsCollector()
        metrics.record_convergence(Milliseconds(10), False)
        metrics.record_convergence(Milliseconds(20), False)
        metrics.record_convergence(Milliseconds(30), True)
        metrics.record_convergence(Milliseconds(40), False)
        metrics.record_convergence(Milliseconds(50), True)

        snapshot = metrics.snapshot()
        assert snapshot.first_converged_at == 30
        assert snapshot.last_converged_at == 50
        assert snapshot.last_diverged_at == 40
        assert snapshot.converged

    def test_time_cannot_go_backwards(self):
        metrics = MetricsCollector()
        metrics.record_convergence(Milliseconds(10), True)
        with pytest.raises(ValueError):
            metrics.record_convergence(Milliseconds(5), True)

    def test_simulator_counts_traffic(self):
        simulator = make_counter_sim(("a", 0), ("b", 0), ("c", 0))
        simulator.submit_operation("a", CounterOperation.INCREMENT)
        simulator.submit_operation("b", CounterOperation.DECREMENT)
        simulator.run_until_quiescent(max_time=Milliseconds(500))

        metrics = simulator.metrics.snapshot()
        assert metrics.operations_submitted == 2
        assert metrics.operations_emitted == 2
        assert metrics.operations_delivered == 4
        assert metrics.operations_applied == 4
        assert metrics.converged


# =============================================================================
# Configuration Tests
# =============================================================================


class TestConfig:
    def test_default_roster_matches_reference_demo(self):
        config = SimulationConfig()
        assert [(s.replica_id, s.delay_ms) for s in config.replicas] == [
            ("1", 3000),
            ("2", 0),
            ("3", 0),
        ]
        assert config.tick_interval_ms == 10

    def test_validation(self):
        with pytest.raises(ValueError):
            SimulationConfig(tick_interval_ms=Milliseconds(0))
        with pytest.raises(ValueError):
            SimulationConfig(replicas=[ReplicaSpec("a"), ReplicaSpec("a")])
        with pytest.raises(ValueError):
            SimulationConfig(replicas=[])
        with pytest.raises(ValueError):
            SimulationConfig(variant="spreadsheet")
        with pytest.raises(ValueError):
            ReplicaSpec("a", delay_ms=Milliseconds(-1))

    def test_from_dict_and_build(self):
        config = SimulationConfig.from_dict(
            {
                "variant": "grid",
                "grid_size": 8,
                "replicas": [{"id": "x", "delay_ms": 20}, {"id": "y", "connected": False}],
            }
        )
        simulator = build_simulator(config)

        assert isinstance(simulator.variant, GridVariant)
        assert simulator.variant.size == 8
        assert simulator.get_replica("x").delay_ms == 20
        assert simulator.get_replica("y").connected is False

    def test_load_config_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "simulation:\n"
            "  variant: counter\n"
            "  tick_interval_ms: 25\n"
            "  replicas:\n"
            "    - {id: a, delay_ms: 100}\n"
            "    - {id: b}\n"
        )

        config = load_config(str(path))

        assert config.variant == VariantKind.COUNTER
        assert config.tick_interval_ms == 25
        assert [s.replica_id for s in config.replicas] == ["a", "b"]

    def test_load_config_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "other.yaml"
        path.write_text("variant: naive_text\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().variant == VariantKind.NAIVE_TEXT

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_empty_simulation_section_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("simulation:\n")

        config = load_config(str(path))

        assert config.variant == VariantKind.SEQUENCE_TEXT
        assert [s.replica_id for s in config.replicas] == ["1", "2", "3"]

    def test_replica_without_id_rejected(self):
        with pytest.raises(ValueError):
            SimulationConfig.from_dict({"replicas": [{"delay_ms": 5}]})


# =============================================================================
# Scheduler Tests
# =============================================================================


def fake_clock(step: float = 10.0):
    """Clock advancing by *step* ms per reading."""
    now = [0.0]

    def clock():
        now[0] += step
        return Milliseconds(now[0])

    return clock


class TestScheduler:
    def test_loop_runs_requested_ticks_and_renders(self):
        simulator = make_counter_sim(("a", 0), ("b", 0))
        simulator.submit_operation("a", CounterOperation.INCREMENT)
        rendered = []

        async def scenario():
            handle = start_simulation(
                simulator,
                interval_ms=Milliseconds(1),
                render=rendered.append,
                clock=fake_clock(),
                max_ticks=5,
            )
            return await handle.wait()

        ticks = asyncio.run(scenario())

        assert ticks == 5
        assert len(rendered) == 5
        assert rendered[-1].clock_ms == 50
        assert rendered[-1].get("b").state == 1

    def test_stop_cancels_loop(self):
        simulator = make_counter_sim(("a", 0))

        async def scenario():
            handle = start_simulation(simulator, interval_ms=Milliseconds(1), clock=fake_clock())
            await asyncio.sleep(0.02)
            assert handle.running
            handle.stop()
            result = await handle.wait()
            return handle, result

        handle, result = asyncio.run(scenario())

        assert result is None
        assert not handle.running
        assert simulator.clock_ms > 0

    def test_adapter_calls_between_ticks(self):
        variant = SequenceTextVariant()
        simulator = Simulator(variant)
        simulator.add_replica("a")
        simulator.add_replica("b")

        async def scenario():
            handle = start_simulation(simulator, interval_ms=Milliseconds(1), clock=fake_clock())
            for character in "hi":
                state = simulator.get_replica("a").state
                simulator.submit_operation("a", variant.insert(state, character))
                await asyncio.sleep(0.005)
            await asyncio.sleep(0.05)
            handle.stop()
            await handle.wait()

        asyncio.run(scenario())

        assert simulator.get_replica("b").state.text == "hi"

    def test_launcher_keeps_one_live_loop(self):
        launcher = DemoLauncher(clock_factory=lambda simulator: fake_clock())

        async def scenario():
            first = launcher.select(SimulationConfig(variant=VariantKind.COUNTER))
            second = launcher.select(SimulationConfig(variant=VariantKind.GRID, grid_size=4))
            await first.wait()
            assert not first.running
            assert launcher.active is second
            assert isinstance(second.simulator.variant, GridVariant)

            launcher.stop()
            await second.wait()
            assert launcher.active is None

        asyncio.run(scenario())

    def test_render_error_surfaces_from_wait(self):
        simulator = make_counter_sim(("a", 0))

        def broken_render(snapshot):
            raise RuntimeError("display went away")

        async def scenario():
            handle = start_simulation(
                simulator, interval_ms=Milliseconds(1), render=broken_render, clock=fake_clock()
            )
            with pytest.raises(RuntimeError, match="display went away"):
                await handle.wait()
            assert not handle.running

        asyncio.run(scenario())
        assert simulator.clock_ms == 10
