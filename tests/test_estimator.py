"""Tests for the clock skew / RTT estimation loop."""

import sys
from pathlib import Path

import pytest

# Ensure src is importable
ROOT = Path(__file__).parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from echoskew.probe.estimator import (  # noqa: E402
    PAYLOAD_MISMATCH,
    SEQUENCE_MISMATCH,
    TIMESTAMP_REGRESSION,
    compute_sample,
    run_ping,
)
from simulated import (  # noqa: E402
    MS,
    EchoingResponder,
    RecordingSink,
    ResequencingResponder,
    SimulatedChannel,
    TamperingResponder,
    VirtualClock,
)
from echoskew.server.responder import EchoResponder  # noqa: E402


async def _run(iterations, one_way_ns, offset_ns=0, payload="", **kwargs):
    clock = VirtualClock()
    channel = SimulatedChannel(clock, one_way_ns, offset_ns=offset_ns, **kwargs)
    result = await run_ping(channel, iterations, payload, clock=clock)
    return result, channel


class TestComputeSample:
    """Timestamp arithmetic of a single iteration."""

    def test_rtts_and_offset(self):
        s = compute_sample(t1a=1000, t2a=3000, t3a=5000, t1b=10_000, t2b=12_000)
        assert (s.rtt1, s.rtt2, s.rtt_r) == (2000, 2000, 2000)
        assert s.avg_rtt == 2000
        # responder midpoint 11000 against client 3000
        assert s.offset == 8000
        assert s.rtts_us() == [2.0, 2.0, 2.0]
        assert s.offset_us() == 8.0

    def test_negative_offset(self):
        s = compute_sample(t1a=10_000, t2a=12_000, t3a=14_000, t1b=4_000, t2b=6_000)
        assert s.offset == -7_000

    def test_odd_responder_rtt_truncates_half(self):
        s = compute_sample(t1a=0, t2a=4, t3a=8, t1b=100, t2b=103)
        assert s.rtt_r == 3
        assert s.offset == 100 + 1 - 4

    def test_avg_rtt_integer(self):
        s = compute_sample(t1a=0, t2a=10, t3a=21, t1b=0, t2b=12)
        assert s.avg_rtt == (10 + 11 + 12) // 3


class TestRunPing:
    """The warm-up plus two-calls-per-iteration loop."""

    @pytest.mark.asyncio
    async def test_five_ms_latency_three_iterations(self):
        result, _ = await _run(3, 5 * MS)
        assert result.ok
        assert result.iterations_completed == 3
        assert len(result.rtt_samples) == 9
        assert len(result.skew_samples) == 3
        for rtt in result.rtt_samples:
            assert rtt == pytest.approx(10_000.0, abs=1e-6)
        for skew in result.skew_samples:
            assert skew == pytest.approx(0.0, abs=1e-6)

    @pytest.mark.asyncio
    async def test_synchronized_clocks_rtt_is_twice_latency(self):
        latency = 2 * MS
        result, _ = await _run(4, latency)
        for s in result.samples:
            assert s.rtt1 == s.rtt2 == s.rtt_r == 2 * latency
            assert s.offset == 0

    @pytest.mark.parametrize("offset_ns", [250_000, -3 * MS, 42 * MS])
    @pytest.mark.parametrize("one_way_ns", [1 * MS, 7 * MS, 123_457])
    @pytest.mark.asyncio
    async def test_constant_offset_recovered_independent_of_latency(self, offset_ns, one_way_ns):
        result, _ = await _run(5, one_way_ns, offset_ns=offset_ns)
        assert result.ok
        for skew in result.skew_samples:
            assert skew == pytest.approx(offset_ns / 1000.0, abs=1e-6)

    @pytest.mark.parametrize("offset_ns", [0, 5 * MS, -5 * MS])
    @pytest.mark.asyncio
    async def test_rtts_never_negative(self, offset_ns):
        result, _ = await _run(10, 300_000, offset_ns=offset_ns)
        assert result.rtt_samples
        assert all(rtt >= 0 for rtt in result.rtt_samples)
        for s in result.samples:
            assert s.rtt1 >= 0 and s.rtt2 >= 0 and s.rtt_r >= 0

    @pytest.mark.asyncio
    async def test_identical_runs_give_identical_samples(self):
        first, _ = await _run(6, 3 * MS, offset_ns=1_234_567, payload="x")
        second, _ = await _run(6, 3 * MS, offset_ns=1_234_567, payload="x")
        assert first.rtt_samples == second.rtt_samples
        assert first.skew_samples == second.skew_samples

    @pytest.mark.asyncio
    async def test_zero_iterations_coerced_to_one(self):
        result, channel = await _run(0, 1 * MS)
        assert result.ok
        assert len(result.rtt_samples) == 3
        assert len(result.skew_samples) == 1
        # warm-up + two timed calls
        assert channel.calls == 3

    @pytest.mark.asyncio
    async def test_negative_iterations_coerced_to_one(self):
        result, channel = await _run(-4, 1 * MS)
        assert result.iterations_completed == 1
        assert channel.calls == 3

    @pytest.mark.asyncio
    async def test_warmup_then_sequenced_requests(self):
        result, channel = await _run(2, 1 * MS, payload="hello")
        warm, a1, b1, a2, b2 = channel.requests
        assert warm.sequence == 0 and warm.timestamp == 0
        assert warm.payload == "hello"
        assert (a1.sequence, a2.sequence) == (1, 2)
        assert all(r.payload == "hello" for r in channel.requests)

    @pytest.mark.asyncio
    async def test_second_call_resends_same_request(self):
        result, channel = await _run(3, 1 * MS)
        for i in range(3):
            first = channel.requests[1 + 2 * i]
            second = channel.requests[2 + 2 * i]
            assert first == second
            assert second.timestamp == result.samples[i].t1a

    @pytest.mark.asyncio
    async def test_samples_streamed_to_sinks(self):
        clock = VirtualClock()
        channel = SimulatedChannel(clock, 2 * MS, offset_ns=MS)
        rtt_sink, skew_sink = RecordingSink(), RecordingSink()
        result = await run_ping(channel, 3, rtt_sink=rtt_sink, skew_sink=skew_sink, clock=clock)
        assert rtt_sink.values == result.rtt_samples
        assert skew_sink.values == result.skew_samples
        assert skew_sink.values == [1000.0, 1000.0, 1000.0]


class TestRunPingFailures:
    """Transport failures abort the run, data problems are flagged."""

    @pytest.mark.asyncio
    async def test_failure_on_second_iteration_aborts_run(self):
        # warm-up is call 1, iteration 2 starts with call 4
        result, channel = await _run(5, 5 * MS, fail_on_call=4)
        assert not result.ok
        assert result.error.call == "ping1"
        assert result.error.iteration == 2
        assert result.iterations_completed == 1
        assert len(result.rtt_samples) == 3
        assert len(result.skew_samples) == 1
        assert channel.calls == 4

    @pytest.mark.asyncio
    async def test_failure_on_second_call_drops_partial_iteration(self):
        result, channel = await _run(5, 5 * MS, fail_on_call=5)
        assert result.error.call == "ping2"
        assert result.error.iteration == 2
        assert len(result.rtt_samples) == 3
        assert len(result.skew_samples) == 1
        assert channel.calls == 5

    @pytest.mark.asyncio
    async def test_warmup_failure_is_fatal(self):
        result, channel = await _run(3, MS, fail_on_call=1)
        assert not result.ok
        assert result.error.call == "warmup"
        assert result.error.iteration == 0
        assert result.rtt_samples == [] and result.skew_samples == []
        assert channel.calls == 1
        assert "warmup (iteration 0)" in str(result.error)

    @pytest.mark.asyncio
    async def test_echoing_responder_corrupts_skew(self):
        # A responder that does not overwrite the timestamp makes the
        # responder-side RTT zero and the skew equal to -2L.
        clock = VirtualClock()
        channel = SimulatedChannel(clock, 5 * MS, responder=EchoingResponder())
        result = await run_ping(channel, 2, clock=clock)
        for s in result.samples:
            assert s.rtt_r == 0
            assert s.offset == -10 * MS
        assert result.skew_samples == [-10_000.0, -10_000.0]

    @pytest.mark.asyncio
    async def test_payload_mismatch_is_flagged_not_recorded(self):
        clock = VirtualClock()
        responder = TamperingResponder(clock=clock, bad_sequence=2)
        channel = SimulatedChannel(clock, MS, responder=responder)
        rtt_sink = RecordingSink()
        result = await run_ping(channel, 3, "hello", rtt_sink=rtt_sink, clock=clock)
        assert result.ok
        assert result.iterations_completed == 3
        assert {v.kind for v in result.violations} == {PAYLOAD_MISMATCH}
        assert {v.iteration for v in result.violations} == {2}
        assert len(result.rtt_samples) == 6
        assert len(result.skew_samples) == 2
        assert len(rtt_sink.values) == 6
        # the tampered response is not carried into the next iteration
        assert channel.requests[5].payload == "hello"

    @pytest.mark.asyncio
    async def test_sequence_mismatch_is_flagged_not_recorded(self):
        clock = VirtualClock()
        responder = ResequencingResponder(clock=clock, bad_sequence=3)
        channel = SimulatedChannel(clock, MS, responder=responder)
        rtt_sink, skew_sink = RecordingSink(), RecordingSink()
        result = await run_ping(channel, 4, "seq", rtt_sink=rtt_sink, skew_sink=skew_sink, clock=clock)
        assert result.ok
        assert result.iterations_completed == 4
        assert [(v.iteration, v.kind) for v in result.violations] == [
            (3, SEQUENCE_MISMATCH), (3, SEQUENCE_MISMATCH)]
        assert "got 103" in result.violations[0].detail
        assert len(result.samples) == 3
        assert len(result.rtt_samples) == 9
        assert len(result.skew_samples) == 3
        assert rtt_sink.values == result.rtt_samples
        assert skew_sink.values == result.skew_samples
        # the run goes on with the next sequence number
        assert [r.sequence for r in channel.requests[7:]] == [4, 4]

    @pytest.mark.asyncio
    async def test_timestamp_regression_is_flagged(self):
        clock = VirtualClock()
        stamps = iter([100, 200, 300, 150, 400, 500, 600])
        channel = SimulatedChannel(clock, MS, responder=EchoResponder(clock=lambda: next(stamps)))
        result = await run_ping(channel, 3, clock=clock)
        assert result.ok
        assert [(v.iteration, v.kind) for v in result.violations] == [(2, TIMESTAMP_REGRESSION)]
        assert len(result.skew_samples) == 2
        assert len(result.rtt_samples) == 6
