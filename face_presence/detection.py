from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable

from .camera import FrameSource
from .exceptions import CameraError
from .extractor import DescriptorExtractor
from .logger import setup_logger
from .types import DetectionSample

SampleHandler = Callable[[DetectionSample], "Awaitable[None] | None"]


class DetectionLoop:
    """Polls the frame source at a fixed cadence and publishes detection samples.

    Ticks run one after another on a single task, so an extractor call never
    overlaps the previous one. Samples that resolve after ``stop`` are dropped.
    """

    def __init__(
        self,
        source: FrameSource,
        extractor: DescriptorExtractor,
        on_sample: SampleHandler,
        interval: float = 1.0,
        should_poll: Callable[[], bool] | None = None,
    ):
        self.source = source
        self.extractor = extractor
        self.on_sample = on_sample
        self.interval = interval
        self.should_poll = should_poll or (lambda: True)
        self.latest: DetectionSample | None = None
        self.ticks = 0
        self._running = False
        self._task: asyncio.Task | None = None
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run(), name="detection-loop")
        self.logger.info("Detection loop started (interval=%.2fs)", self.interval)

    def stop(self) -> None:
        if not self._running and self._task is None:
            return
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.logger.info("Detection loop stopped after %d ticks", self.ticks)

    async def poll_once(self) -> DetectionSample:
        try:
            frame = await asyncio.to_thread(self.source.current_frame)
        except CameraError as exc:
            self.logger.warning("Frame read failed: %s", exc)
            return DetectionSample.absent()
        except Exception:
            # Backend errors (cv2.error, OSError) are per tick, not fatal.
            self.logger.exception("Frame read raised unexpectedly")
            return DetectionSample.absent()

        try:
            descriptor = await asyncio.to_thread(self.extractor.detect, frame)
        except Exception as exc:
            self.logger.warning("Detection tick failed: %s", exc)
            return DetectionSample.absent()

        if descriptor is None:
            return DetectionSample.absent()
        return DetectionSample.detected(descriptor, frame=frame)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            if self.should_poll():
                try:
                    sample = await self.poll_once()
                except Exception:
                    self.logger.exception("Detection tick failed")
                    sample = DetectionSample.absent()
                if not self._running:
                    break
                self.ticks += 1
                self.latest = sample
                try:
                    result = self.on_sample(sample)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    self.logger.exception("Sample handler failed")
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))
