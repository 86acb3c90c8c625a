import random
import threading
import time

import pytest

from core import queue as queue_mod
from core.models import PortStatus, ProbeOutcome, ScanConfig, ScanPhase, ScanTarget
from pipeline.orchestrator import Orchestrator, scan
from probers import l4_tcp, rtt


def _target(start, end, ip="127.0.0.1"):
    return ScanTarget(host="localhost", ip=ip, start_port=start, end_port=end)


def _config(concurrency=16, timeout_ms=300, retries=1, adaptive=False):
    return ScanConfig(concurrency=concurrency, timeout_ms=timeout_ms, retries=retries, adaptive=adaptive)


def _closed_probe(ip, port, timeout, retries=0, stop=None):
    return ProbeOutcome(port=port, status=PortStatus.CLOSED)


def test_one_outcome_per_port(monkeypatch):
    monkeypatch.setattr(l4_tcp, "probe_port", _closed_probe)
    report = scan(_target(1, 300), _config(concurrency=16))
    assert [r.port for r in report.results] == list(range(1, 301))
    assert report.open_count == 0
    assert not report.cancelled


def test_results_sorted_regardless_of_completion_order(monkeypatch):
    rng = random.Random(7)
    delays = {p: rng.uniform(0, 0.005) for p in range(100, 181)}

    def jittery(ip, port, timeout, retries=0, stop=None):
        # later ports finish first
        time.sleep(delays[port] + (180 - port) * 0.0002)
        status = PortStatus.OPEN if port % 7 == 0 else PortStatus.CLOSED
        return ProbeOutcome(port=port, status=status)

    monkeypatch.setattr(l4_tcp, "probe_port", jittery)
    report = scan(_target(100, 180), _config(concurrency=10))
    ports = [r.port for r in report.results]
    assert ports == sorted(ports)
    assert len(ports) == len(set(ports)) == 81
    assert [r.port for r in report.open_results] == [p for p in range(100, 181) if p % 7 == 0]


def test_in_flight_probes_bounded_by_concurrency(monkeypatch):
    lock = threading.Lock()
    state = {"now": 0, "max": 0}

    def slow(ip, port, timeout, retries=0, stop=None):
        with lock:
            state["now"] += 1
            state["max"] = max(state["max"], state["now"])
        time.sleep(0.01)
        with lock:
            state["now"] -= 1
        return ProbeOutcome(port=port, status=PortStatus.CLOSED)

    monkeypatch.setattr(l4_tcp, "probe_port", slow)
    report = scan(_target(1, 120), _config(concurrency=8))
    assert len(report.results) == 120
    assert 1 <= state["max"] <= 8


def test_adaptive_timeout_is_estimated_once_and_shared(monkeypatch):
    estimates = []
    timeouts = set()

    def fake_estimate(ip, max_timeout):
        estimates.append((ip, max_timeout))
        return 0.123

    def record(ip, port, timeout, retries=0, stop=None):
        timeouts.add(timeout)
        return ProbeOutcome(port=port, status=PortStatus.CLOSED)

    monkeypatch.setattr(rtt, "estimate_timeout", fake_estimate)
    monkeypatch.setattr(l4_tcp, "probe_port", record)
    report = scan(_target(1, 50), _config(timeout_ms=300, adaptive=True))

    assert estimates == [("127.0.0.1", 0.3)]
    assert timeouts == {0.123}
    assert report.timeout_ms == pytest.approx(123.0)


def test_fixed_timeout_skips_estimation(monkeypatch):
    def boom(*args, **kwargs):
        raise AssertionError("estimator must not run")

    timeouts = set()

    def record(ip, port, timeout, retries=0, stop=None):
        timeouts.add((timeout, retries))
        return ProbeOutcome(port=port, status=PortStatus.CLOSED)

    monkeypatch.setattr(rtt, "estimate_timeout", boom)
    monkeypatch.setattr(l4_tcp, "probe_port", record)
    scan(_target(1, 10), _config(timeout_ms=250, retries=2, adaptive=False))
    assert timeouts == {(0.25, 2)}


def test_orchestrator_runs_once(monkeypatch):
    monkeypatch.setattr(l4_tcp, "probe_port", _closed_probe)
    orch = Orchestrator(_target(5, 6), _config())
    assert orch.phase is ScanPhase.IDLE
    orch.run()
    assert orch.phase is ScanPhase.DONE
    with pytest.raises(RuntimeError):
        orch.run()


def test_phases_visited_in_order(monkeypatch):
    orch = Orchestrator(_target(1, 3), _config(adaptive=True))
    seen = []
    original = orch._enter

    def spy(phase):
        seen.append(phase)
        original(phase)

    monkeypatch.setattr(orch, "_enter", spy)
    monkeypatch.setattr(rtt, "estimate_timeout", lambda ip, max_timeout: 0.2)
    monkeypatch.setattr(l4_tcp, "probe_port", _closed_probe)
    orch.run()

    ordered = [p for i, p in enumerate(seen) if i == 0 or seen[i - 1] is not p]
    assert ordered == [ScanPhase.ESTIMATING, ScanPhase.SCANNING, ScanPhase.DRAINING, ScanPhase.DONE]


def test_crashing_probe_degrades_to_closed(monkeypatch):
    def flaky(ip, port, timeout, retries=0, stop=None):
        if port == 3:
            raise RuntimeError("unexpected")
        return ProbeOutcome(port=port, status=PortStatus.OPEN)

    monkeypatch.setattr(l4_tcp, "probe_port", flaky)
    report = scan(_target(1, 5), _config(concurrency=2))
    assert [r.port for r in report.results] == [1, 2, 3, 4, 5]
    assert report.results[2].status is PortStatus.CLOSED


def test_cancel_stops_pulling_ports(monkeypatch):
    orch = Orchestrator(_target(1, 5000), _config(concurrency=4))

    def cancelling(ip, port, timeout, retries=0, stop=None):
        if port == 50:
            orch.cancel()
        time.sleep(0.001)
        return ProbeOutcome(port=port, status=PortStatus.CLOSED)

    monkeypatch.setattr(l4_tcp, "probe_port", cancelling)
    report = orch.run()

    ports = [r.port for r in report.results]
    assert report.cancelled
    assert orch.phase is ScanPhase.DONE
    assert 50 in ports
    assert len(ports) < 5000
    assert len(ports) == len(set(ports))
    assert ports == sorted(ports)


def test_real_scan_against_loopback(listener, closed_port):
    lst = listener(b"SSH-2.0-test\r\n")
    start, end = max(lst.port - 3, 1), min(lst.port + 3, 65535)
    report = scan(_target(start, end), _config(concurrency=64, timeout_ms=300, retries=0))

    assert len(report.results) == end - start + 1
    by_port = {r.port: r for r in report.results}
    assert by_port[lst.port].is_open
    assert by_port[lst.port].banner == b"SSH-2.0-test\r\n"

    report = scan(_target(closed_port, closed_port), _config(retries=0))
    assert [r.to_doc() for r in report.results] == [{"port": closed_port, "status": "closed"}]
    assert report.open_results == []


def test_scenario_single_service_in_small_range(listener):
    try:
        listener(b"SVC-1\n", port=9999)
    except OSError:
        pytest.skip("port 9999 unavailable")

    report = scan(_target(9990, 10000), _config(concurrency=500, timeout_ms=300, retries=1))

    assert [r.port for r in report.results] == list(range(9990, 10001))
    for r in report.results:
        if r.port == 9999:
            assert r.status is PortStatus.OPEN
            assert r.banner == b"SVC-1\n"
        else:
            assert r.status is PortStatus.CLOSED
            assert r.banner == b""
    assert [r.to_doc() for r in report.open_results] == [{"port": 9999, "status": "open", "banner": "SVC-1\n"}]


def test_cancel_returns_with_more_workers_than_queue_slots(monkeypatch):
    monkeypatch.setattr(queue_mod.settings, "queue_capacity", 4)
    orch = Orchestrator(_target(1, 5000), _config(concurrency=64))

    def cancel_first(ip, port, timeout, retries=0, stop=None):
        orch.cancel()
        return ProbeOutcome(port=port, status=PortStatus.CLOSED)

    monkeypatch.setattr(l4_tcp, "probe_port", cancel_first)
    reports = []
    runner = threading.Thread(target=lambda: reports.append(orch.run()), daemon=True)
    runner.start()
    runner.join(timeout=5)

    assert not runner.is_alive()
    assert reports[0].cancelled
    assert len(reports[0].results) < 5000


def test_ports_pulled_after_cancel_are_not_reported(monkeypatch):
    orch = Orchestrator(_target(1, 100), _config(concurrency=1))

    def cancel_on_first(ip, port, timeout, retries=0, stop=None):
        if port == 1:
            orch.cancel()
        return ProbeOutcome(port=port, status=PortStatus.OPEN)

    monkeypatch.setattr(l4_tcp, "probe_port", cancel_on_first)
    report = orch.run()
    assert [r.port for r in report.results] == [1]


def test_scan_cancelled_before_start_reports_nothing():
    orch = Orchestrator(_target(1, 10), _config(concurrency=1, retries=0))
    orch.cancel()
    report = orch.run()
    assert report.cancelled
    assert report.results == []
