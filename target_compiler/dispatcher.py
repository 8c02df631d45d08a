"""
Tracking Dispatcher

Runs the tracking phase for all targets with one of two strategies:

- InProcessTracking: sequentially on the caller's thread.
- DelegatedTracking: in one worker process that talks to the dispatcher only
  through a message queue (progress messages, then one terminal message).

Both report progress over the tracking half of the total (50-100) and return
datasets in input order. Any failure aborts the whole phase.
"""

import asyncio
import multiprocessing
import queue as queue_module
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .errors import WorkerFailure
from .progress import MATCHING_SHARE, TRACKING_SHARE, PhaseProgress, ProgressCallback
from .records import GreyImage, PyramidLevel, TrackingFeatureSet
from .tracking import TrackingExtractor, extract_tracking_features

PyramidBuilder = Callable[[GreyImage], List[PyramidLevel]]
TrackingDataset = List[TrackingFeatureSet]

# Seconds between liveness checks while waiting on the worker
POLL_INTERVAL = 0.1


def track_targets(
    images: List[GreyImage],
    pyramid_builder: PyramidBuilder,
    extractor: TrackingExtractor,
    phase: PhaseProgress,
) -> List[TrackingDataset]:
    """Build tracking pyramids and feature sets for every target, in order."""
    datasets = []
    for index, image in enumerate(images):
        levels = pyramid_builder(image)
        datasets.append(extract_tracking_features(
            levels, extractor, phase.for_target(index, len(levels))
        ))
    return datasets


def tracking_worker(outbox, images: List[GreyImage],
                    pyramid_builder: PyramidBuilder, extractor: TrackingExtractor):
    """
    Worker process entry point.

    Sends ("progress", percent) messages with percent in [0, 50], then
    exactly one of ("done", datasets) or ("error", description).
    """
    phase = PhaseProgress(
        lambda percent: outbox.put(("progress", percent)),
        len(images),
        offset=0.0,
        span=TRACKING_SHARE,
    )
    try:
        datasets = track_targets(images, pyramid_builder, extractor, phase)
    except Exception as e:
        outbox.put(("error", f"{type(e).__name__}: {e}"))
        return
    outbox.put(("done", datasets))


class TrackingStrategy(ABC):
    """Runs the tracking phase for a list of grey target images."""

    def __init__(self, pyramid_builder: PyramidBuilder, extractor: TrackingExtractor):
        self.pyramid_builder = pyramid_builder
        self.extractor = extractor

    @abstractmethod
    async def run(self, images: List[GreyImage],
                  report: ProgressCallback) -> List[TrackingDataset]:
        """
        Args:
            images: Grey target images, pixel data included
            report: Receives absolute progress in [50, 100]

        Returns:
            One tracking dataset per image, in input order
        """


class InProcessTracking(TrackingStrategy):
    """Tracking on the caller's thread."""

    async def run(self, images: List[GreyImage],
                  report: ProgressCallback) -> List[TrackingDataset]:
        phase = PhaseProgress(report, len(images), offset=MATCHING_SHARE, span=TRACKING_SHARE)
        return track_targets(images, self.pyramid_builder, self.extractor, phase)


class WorkerInbox:
    """
    Reads worker messages on a polling thread.

    Every read checks the deadline first and never waits past it. `close()`
    waits for a read in progress, and reads after it return None.
    """

    def __init__(self, outbox, process, deadline: Optional[float] = None):
        self.outbox = outbox
        self.process = process
        self.deadline = deadline
        self._reading = threading.Lock()
        self._closing = threading.Event()

    def next_message(self):
        """Block until the next message; None once the inbox is closed."""
        while not self._closing.is_set():
            with self._reading:
                if self._closing.is_set():
                    break
                message = self._poll()
            if message is not None:
                return message
        return None

    def close(self):
        self._closing.set()
        with self._reading:
            self.outbox.close()

    def _poll(self):
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise WorkerFailure("Tracking worker timed out")

        try:
            return self.outbox.get(timeout=self._wait_time())
        except queue_module.Empty:
            pass

        if not self.process.is_alive():
            # The last message may still be in flight when the process exits
            try:
                return self.outbox.get(timeout=POLL_INTERVAL)
            except queue_module.Empty:
                raise WorkerFailure(
                    f"Tracking worker exited with code {self.process.exitcode} "
                    "without sending a result"
                )
        return None

    def _wait_time(self) -> float:
        if self.deadline is None:
            return POLL_INTERVAL
        return max(0.0, min(POLL_INTERVAL, self.deadline - time.monotonic()))


class DelegatedTracking(TrackingStrategy):
    """
    Tracking in a separate worker process.

    The collaborators are pickled into the worker, so they must be
    module-level callables.
    """

    def __init__(self, pyramid_builder: PyramidBuilder, extractor: TrackingExtractor,
                 start_method: str = "spawn", timeout: Optional[float] = None):
        super().__init__(pyramid_builder, extractor)
        self.start_method = start_method
        self.timeout = timeout

    async def run(self, images: List[GreyImage],
                  report: ProgressCallback) -> List[TrackingDataset]:
        context = multiprocessing.get_context(self.start_method)
        outbox = context.Queue()
        process = context.Process(
            target=tracking_worker,
            args=(outbox, images, self.pyramid_builder, self.extractor),
            name="tracking-worker",
            daemon=True,
        )
        process.start()

        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        inbox = WorkerInbox(outbox, process, deadline)
        try:
            while True:
                kind, payload = await asyncio.to_thread(inbox.next_message)
                if kind == "progress":
                    report(MATCHING_SHARE + payload)
                elif kind == "done":
                    return payload
                elif kind == "error":
                    raise WorkerFailure(f"Tracking worker failed: {payload}")
                else:
                    raise WorkerFailure(f"Unexpected message from tracking worker: {kind!r}")
        finally:
            if process.is_alive():
                process.terminate()
            process.join()
            inbox.close()


def make_tracking_strategy(avoid_worker: bool, pyramid_builder: PyramidBuilder,
                           extractor: TrackingExtractor, start_method: str = "spawn",
                           timeout: Optional[float] = None) -> TrackingStrategy:
    """Pick the tracking strategy for one compilation run."""
    if avoid_worker:
        return InProcessTracking(pyramid_builder, extractor)
    return DelegatedTracking(pyramid_builder, extractor,
                             start_method=start_method, timeout=timeout)
