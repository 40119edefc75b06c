"""Crash point draw and the stepped multiplier curve.

The multiplier climbs on a fixed tick. How fast it climbs depends on the
integer level it is in: each level takes half as long as the previous one
(10s for 1x->2x, 5s for 2x->3x, 2.5s for 3x->4x, ...), so the curve visibly
accelerates while staying fully determined by the crash point.
"""
import math
import random


CRASH_MIN = 1.0
CRASH_MAX = 5.0
TICK_INTERVAL_MS = 100
BASE_LEVEL_DURATION_MS = 10000


def draw_crash_point(rng=None, low: float = CRASH_MIN, high: float = CRASH_MAX) -> float:
    """Uniform crash point in [low, high), truncated to two decimals."""
    rng = rng or random
    value = low + rng.random() * (high - low)
    value = math.floor(value * 100) / 100
    # truncation can never push past the range, but float noise on `high` can
    return min(max(value, low), round(high - 0.01, 2))


def level_of(multiplier: float) -> int:
    return max(1, int(math.floor(multiplier)))


def level_duration_ms(level: int, base_ms: float = BASE_LEVEL_DURATION_MS) -> float:
    return base_ms / (2 ** (level - 1))


def tick_increment(multiplier: float,
                   tick_ms: float = TICK_INTERVAL_MS,
                   base_ms: float = BASE_LEVEL_DURATION_MS) -> float:
    ticks_per_level = level_duration_ms(level_of(multiplier), base_ms) / tick_ms
    return 1.0 / ticks_per_level


def next_multiplier(current: float, crash_at: float,
                    tick_ms: float = TICK_INTERVAL_MS,
                    base_ms: float = BASE_LEVEL_DURATION_MS) -> float:
    """Advance one tick, never past the crash point."""
    stepped = round(current + tick_increment(current, tick_ms, base_ms), 10)
    return min(stepped, crash_at)


def display_value(multiplier: float, crash_at: float) -> float:
    """Two-decimal value shown to clients; never above the crash point."""
    return min(round(multiplier, 2), crash_at)


def curve(crash_at: float,
          tick_ms: float = TICK_INTERVAL_MS,
          base_ms: float = BASE_LEVEL_DURATION_MS):
    """Yield every value a round with this crash point would broadcast.

    Used by the CLI and by tests; the engine walks the same steps one
    timer tick at a time.
    """
    current = 1.0
    while True:
        yield display_value(current, crash_at)
        current = next_multiplier(current, crash_at, tick_ms, base_ms)
        if current >= crash_at:
            yield crash_at
            return
