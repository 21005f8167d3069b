"""Camera and face-detection capabilities.

The face monitor only needs "is there a face in front of the camera right
now?".  How that is answered is hidden behind ``FacePresenceCapability``:

  OpenCVFaceCapability     a real webcam (cv2.VideoCapture) and OpenCV's
                           bundled Haar frontal-face cascade
  ScriptedFaceCapability   a fixed script of results, for tests and demos

The camera itself is an ``ExclusiveDevice``: only one holder at a time, and
a second claim fails immediately instead of waiting.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

import cv2

from proctorsync.core.errors import CapabilityUnavailable

logger = logging.getLogger(__name__)


class ExclusiveDevice:
    """A device that at most one owner may hold."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._holder: object | None = None
        self._lock = threading.Lock()

    @property
    def held(self) -> bool:
        return self._holder is not None

    def claim(self, holder: object) -> None:
        with self._lock:
            if self._holder is not None and self._holder is not holder:
                raise CapabilityUnavailable(f"{self.name} is already in use")
            self._holder = holder

    def release(self, holder: object) -> None:
        with self._lock:
            if self._holder is holder:
                self._holder = None


camera_device = ExclusiveDevice("camera")


@runtime_checkable
class FacePresenceCapability(Protocol):
    async def acquire(self) -> None:
        """Open the camera and load the detector.  Raises CapabilityUnavailable."""
        ...

    async def detect(self) -> bool:
        """Grab one frame and report whether a face is in it."""
        ...

    def release(self) -> None:
        """Free the camera.  Safe to call more than once."""
        ...


class OpenCVFaceCapability:
    """Webcam + Haar cascade.

    cv2 calls block, so frame grabs and detection run in a worker thread.
    ``_io_lock`` keeps ``release()`` from closing the capture while a
    worker thread is reading from it.
    """

    CASCADE_FILE = "haarcascade_frontalface_default.xml"

    def __init__(self, camera_index: int = 0, device: ExclusiveDevice = camera_device) -> None:
        self.camera_index = camera_index
        self._device = device
        self._capture = None
        self._cascade = None
        self._io_lock = threading.Lock()

    async def acquire(self) -> None:
        self._device.claim(self)
        try:
            await asyncio.to_thread(self._open)
        except CapabilityUnavailable:
            self._device.release(self)
            raise
        except Exception as exc:
            self._device.release(self)
            raise CapabilityUnavailable(f"camera initialization failed: {exc}") from exc

    def _open(self) -> None:
        cascade = cv2.CascadeClassifier(cv2.data.haarcascades + self.CASCADE_FILE)
        if cascade.empty():
            raise CapabilityUnavailable("face detection model failed to load")
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise CapabilityUnavailable(
                f"camera {self.camera_index} could not be opened (denied or missing)"
            )
        with self._io_lock:
            self._capture = capture
            self._cascade = cascade
        logger.info("Camera %d opened", self.camera_index)

    async def detect(self) -> bool:
        return await asyncio.to_thread(self._detect_blocking)

    def _detect_blocking(self) -> bool:
        with self._io_lock:
            if self._capture is None or self._cascade is None:
                raise RuntimeError("camera is not open")
            ok, frame = self._capture.read()
            if not ok:
                raise RuntimeError("frame grab failed")
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            faces = self._cascade.detectMultiScale(
                gray, scaleFactor=1.1, minNeighbors=5, minSize=(60, 60)
            )
        return len(faces) > 0

    def release(self) -> None:
        with self._io_lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info("Camera %d released", self.camera_index)
            self._cascade = None
        self._device.release(self)


class ScriptedFaceCapability:
    """Plays back a fixed sequence of detection results.

    Each item is True (face), False (no face) or an exception instance to
    raise from ``detect()``.  Once the script runs out the last result
    repeats.  Set ``hold`` to an ``asyncio.Event`` to make every detect()
    wait for it, which lets a test stop the monitor mid-poll.
    """

    def __init__(
        self,
        results: Iterable[bool | Exception] = (),
        *,
        fail_acquire: str | None = None,
        device: ExclusiveDevice | None = None,
        hold: asyncio.Event | None = None,
    ) -> None:
        self._script = list(results)
        self._fail_acquire = fail_acquire
        self._device = device
        self.hold = hold
        self.acquire_calls = 0
        self.detect_calls = 0
        self.release_calls = 0
        self.acquired = False

    async def acquire(self) -> None:
        self.acquire_calls += 1
        if self._fail_acquire is not None:
            raise CapabilityUnavailable(self._fail_acquire)
        if self._device is not None:
            self._device.claim(self)
        self.acquired = True

    async def detect(self) -> bool:
        if self.hold is not None:
            await self.hold.wait()
        index = min(self.detect_calls, len(self._script) - 1)
        self.detect_calls += 1
        if index < 0:
            return True
        result = self._script[index]
        if isinstance(result, Exception):
            raise result
        return result

    def release(self) -> None:
        self.release_calls += 1
        self.acquired = False
        if self._device is not None:
            self._device.release(self)
