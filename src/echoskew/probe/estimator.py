"""Clock skew and RTT estimation against an echo responder.

Each iteration issues two back-to-back pings carrying the same request and
reads four timestamps in the client clock domain plus two in the responder's:

    t1a  client, before ping 1 is sent (also the ts carried by both requests)
    t2a  client, after ping 1 returned
    t3a  client, after ping 2 returned
    t1b  responder, while handling ping 1
    t2b  responder, while handling ping 2

which give three RTT samples (t2a - t1a, t3a - t2a, t2b - t1b) and, assuming
symmetric latency, one offset sample: the responder clock midway between its
two handling instants minus the client clock at that same instant (t2a).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Protocol

from echoskew.errors import CallError, ProbeError
from echoskew.utils.logging_config import get_logger
from echoskew.wire.message import PingMessage

logger = get_logger(__name__)

Clock = Callable[[], int]

PAYLOAD_MISMATCH = "payload_mismatch"
SEQUENCE_MISMATCH = "sequence_mismatch"
TIMESTAMP_REGRESSION = "timestamp_regression"


class PingChannel(Protocol):
    def call(self, msg: PingMessage) -> Awaitable[PingMessage]: ...


class StatsSink(Protocol):
    def record(self, value: float) -> None: ...


@dataclass(frozen=True)
class IterationSample:
    """Timestamps of one iteration (ns) and what is derived from them."""

    t1a: int
    t2a: int
    t3a: int
    t1b: int
    t2b: int

    @property
    def rtt1(self) -> int:
        return self.t2a - self.t1a

    @property
    def rtt2(self) -> int:
        return self.t3a - self.t2a

    @property
    def rtt_r(self) -> int:
        return self.t2b - self.t1b

    @property
    def avg_rtt(self) -> int:
        return (self.rtt1 + self.rtt2 + self.rtt_r) // 3

    @property
    def offset(self) -> int:
        mid = self.t1b + self.rtt_r // 2
        return mid - self.t2a

    def rtts_us(self) -> List[float]:
        return [ns_to_us(self.rtt1), ns_to_us(self.rtt2), ns_to_us(self.rtt_r)]

    def offset_us(self) -> float:
        return ns_to_us(self.offset)


def compute_sample(t1a: int, t2a: int, t3a: int, t1b: int, t2b: int) -> IterationSample:
    return IterationSample(t1a=t1a, t2a=t2a, t3a=t3a, t1b=t1b, t2b=t2b)


def ns_to_us(ns: int) -> float:
    return ns / 1000.0


def coerce_count(n: int) -> int:
    return n if n > 0 else 1


@dataclass
class ProtocolViolation:
    iteration: int
    kind: str
    detail: str


@dataclass
class PingRunResult:
    rtt_samples: List[float] = field(default_factory=list)
    skew_samples: List[float] = field(default_factory=list)
    samples: List[IterationSample] = field(default_factory=list)
    iterations_completed: int = 0
    violations: List[ProtocolViolation] = field(default_factory=list)
    error: Optional[CallError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _timed_call(channel: PingChannel, msg: PingMessage, call: str, iteration: int) -> PingMessage:
    try:
        return await channel.call(msg)
    except CallError as e:
        raise e.with_context(call, iteration)
    except ProbeError as e:
        raise CallError(str(e), call=call, iteration=iteration, cause=e) from e


def _check_response(iteration: int, request: PingMessage, response: PingMessage,
                    previous_ts: int) -> List[ProtocolViolation]:
    found = []
    if response.payload != request.payload:
        found.append(ProtocolViolation(iteration, PAYLOAD_MISMATCH,
                                       f"sent {request.payload!r}, got {response.payload!r}"))
    if response.sequence != request.sequence:
        found.append(ProtocolViolation(iteration, SEQUENCE_MISMATCH,
                                       f"sent {request.sequence}, got {response.sequence}"))
    if response.timestamp < previous_ts:
        found.append(ProtocolViolation(iteration, TIMESTAMP_REGRESSION,
                                       f"{response.timestamp} < previous {previous_ts}"))
    return found


async def run_ping(
    channel: PingChannel,
    iterations: int,
    payload: str = "",
    rtt_sink: Optional[StatsSink] = None,
    skew_sink: Optional[StatsSink] = None,
    clock: Clock = time.time_ns,
) -> PingRunResult:
    """Run one warm-up call and ``iterations`` timed iterations.

    RTT samples (three per iteration) and skew samples (one per iteration) are
    in microseconds. Any failed call ends the run; the error is returned on
    the result together with the samples of the iterations that completed.
    """
    iterations = coerce_count(iterations)
    result = PingRunResult()
    base = PingMessage(payload=payload)

    try:
        warm = await _timed_call(channel, base, "warmup", 0)
    except CallError as e:
        logger.error(f"Ping warm-up failed: {e}")
        result.error = e
        return result
    previous_ts = warm.timestamp

    for i in range(1, iterations + 1):
        t1a = clock()
        request = base.with_fields(sequence=i, timestamp=t1a)
        try:
            res1 = await _timed_call(channel, request, "ping1", i)
            t2a = clock()
            # same request value on purpose: both calls carry t1a
            res2 = await _timed_call(channel, request, "ping2", i)
            t3a = clock()
        except CallError as e:
            logger.error(f"Ping run aborted: {e}", completed=result.iterations_completed)
            result.error = e
            return result

        sample = compute_sample(t1a, t2a, t3a, res1.timestamp, res2.timestamp)
        violations = (_check_response(i, request, res1, previous_ts)
                      + _check_response(i, request, res2, res1.timestamp))
        result.iterations_completed = i
        previous_ts = max(previous_ts, res2.timestamp)

        if violations:
            for v in violations:
                logger.warning(f"Protocol violation: {v.kind} {v.detail}", iteration=i)
            result.violations.extend(violations)
            continue

        rtts = sample.rtts_us()
        skew = sample.offset_us()
        for rtt in rtts:
            result.rtt_samples.append(rtt)
            if rtt_sink is not None:
                rtt_sink.record(rtt)
        result.skew_samples.append(skew)
        if skew_sink is not None:
            skew_sink.record(skew)
        result.samples.append(sample)
        logger.info(
            f"Ping RTT {sample.avg_rtt} (avg of {sample.rtt1}, {sample.rtt_r}, {sample.rtt2} ns) "
            f"clock skew {sample.offset}",
            iteration=i,
        )
        base = res2

    return result
