"""Progress accounting for the two compilation phases."""

from typing import Callable, Optional

ProgressCallback = Callable[[float], None]

MATCHING_SHARE = 50.0
TRACKING_SHARE = 50.0


class MonotonicProgress:
    """Forwards percentages to a callback, never letting them decrease."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.percent = 0.0

    def report(self, percent: float):
        percent = min(100.0, max(self.percent, percent))
        self.percent = percent
        if self.callback is not None:
            self.callback(percent)


class PhaseProgress:
    """
    Maps per-level completions of one phase onto [offset, offset + span].

    Each target gets span / target_count, split evenly over its levels. The
    value is recomputed from counts rather than accumulated, so the last
    level of the last target lands exactly on offset + span.
    """

    def __init__(self, report: ProgressCallback, target_count: int,
                 offset: float = 0.0, span: float = MATCHING_SHARE):
        self.report = report
        self.target_count = target_count
        self.offset = offset
        self.span = span

    def level_done(self, target_index: int, level_index: int, level_count: int):
        fraction = (target_index + (level_index + 1) / level_count) / self.target_count
        self.report(self.offset + self.span * fraction)

    def for_target(self, target_index: int, level_count: int) -> Callable[[int], None]:
        """Per-level callback for one target."""
        return lambda level_index: self.level_done(target_index, level_index, level_count)
