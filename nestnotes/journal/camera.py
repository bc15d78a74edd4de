"""Camera capture adapter producing upload-ready still photos."""

import asyncio
import io
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, runtime_checkable

import numpy as np
import ulid
from loguru import logger
from PIL import Image

from .bus import EventBus
from .config import CameraConfig
from .errors import (
    CameraError,
    CameraPermissionError,
    CameraStateError,
    CameraUnavailableError,
)
from .models import UploadBatchResult, UploadFile


PERMISSION_DENIED_MESSAGE = (
    "Camera access was denied. Allow camera access or choose a photo from your files instead."
)
UNAVAILABLE_MESSAGE = "No camera is available. Choose a photo from your files instead."


class CameraState(Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting-permission"
    STREAMING = "streaming"
    CAPTURING = "capturing"
    ERROR = "error"


@dataclass
class CameraConstraints:
    """Video-only stream request: preferred facing mode and resolution hints."""
    facing_mode: str = "environment"
    width: int = 1920
    height: int = 1080


@runtime_checkable
class CameraStream(Protocol):
    """A live video stream holding the camera hardware."""

    async def read_frame(self) -> np.ndarray:
        """Return the current frame as an RGB uint8 array (H x W x 3)."""
        ...

    def stop(self) -> None:
        """Release the hardware. Must be safe to call more than once."""
        ...


@runtime_checkable
class CameraDevice(Protocol):
    """Platform media-capture API."""

    async def open(self, constraints: CameraConstraints) -> CameraStream:
        """
        Acquire a live stream.

        Raises:
            CameraPermissionError: access denied
            CameraUnavailableError: no matching device
        """
        ...


def encode_jpeg(frame: np.ndarray, quality: int = 80, max_size: Optional[tuple] = None) -> bytes:
    """Encode an RGB frame as JPEG, bounded to max_size (width, height) if given."""
    image = Image.fromarray(np.asarray(frame, dtype=np.uint8))
    if image.mode != "RGB":
        image = image.convert("RGB")
    if max_size:
        image.thumbnail(max_size)
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


class CameraAdapter:
    """
    Drives one camera session.

    States: idle -> requesting-permission -> streaming -> capturing -> idle,
    with error reachable from the first two active states. The hardware
    stream is stopped on capture, cancel, close, and when it arrives after
    the session was already cancelled.
    """

    def __init__(self, device: CameraDevice, config: CameraConfig, bus: Optional[EventBus] = None):
        self.device = device
        self.config = config
        self.bus = bus or EventBus()
        self.state = CameraState.IDLE
        self.error: Optional[str] = None
        self.fallback_to_file_picker = False
        self._stream: Optional[CameraStream] = None
        self._session = 0

    async def __aenter__(self) -> "CameraAdapter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    @property
    def constraints(self) -> CameraConstraints:
        return CameraConstraints(
            facing_mode=self.config.facing_mode,
            width=self.config.width,
            height=self.config.height,
        )

    @property
    def has_active_stream(self) -> bool:
        return self._stream is not None

    async def start(self) -> CameraState:
        """Request camera access and begin streaming."""
        if self.state is CameraState.ERROR:
            await self.reset()
        if self.state is not CameraState.IDLE:
            raise CameraStateError(f"Cannot start camera while {self.state.value}")

        self._session += 1
        session = self._session
        self.error = None
        self.fallback_to_file_picker = False
        await self._set_state(CameraState.REQUESTING_PERMISSION)

        try:
            stream = await self.device.open(self.constraints)
        except CameraPermissionError as e:
            logger.warning(f"Camera permission denied: {e}")
            if session == self._session:
                await self._enter_error(PERMISSION_DENIED_MESSAGE)
            return self.state
        except (CameraUnavailableError, OSError) as e:
            logger.warning(f"Camera unavailable: {e}")
            if session == self._session:
                await self._enter_error(UNAVAILABLE_MESSAGE)
            return self.state
        except asyncio.CancelledError:
            if session == self._session:
                self.state = CameraState.IDLE
            raise

        if session != self._session:
            # Cancelled or restarted while the permission prompt was open
            logger.debug("Camera stream arrived after cancel, stopping it")
            stream.stop()
            return self.state

        self._stream = stream
        await self._set_state(CameraState.STREAMING)
        return self.state

    async def capture(self) -> UploadFile:
        """Grab the current frame as a JPEG and release the camera."""
        if self.state is not CameraState.STREAMING or self._stream is None:
            raise CameraStateError(f"Cannot capture while {self.state.value}")

        await self._set_state(CameraState.CAPTURING)
        try:
            frame = await self._stream.read_frame()
            data = await asyncio.to_thread(
                encode_jpeg,
                frame,
                self.config.jpeg_quality,
                (self.config.width, self.config.height),
            )
        except asyncio.CancelledError:
            self.state = CameraState.IDLE
            raise
        except Exception as e:
            await self._enter_error(f"Could not capture photo: {e}")
            raise CameraError(self.error) from e
        finally:
            self._release_stream()

        await self._set_state(CameraState.IDLE)

        file = UploadFile.from_bytes(data, f"capture-{ulid.ULID()}.jpg", "image/jpeg")
        logger.info(f"Captured {file.name} ({file.size} bytes)")
        return file

    async def capture_and_upload(self, uploader) -> UploadBatchResult:
        """Capture a photo and send it through the uploader's validation and upload path."""
        file = await self.capture()
        return await uploader.upload([file])

    async def cancel(self) -> None:
        """Abandon the session from any state, releasing the camera."""
        self._session += 1
        self._release_stream()
        self.error = None
        if self.state is not CameraState.IDLE:
            await self._set_state(CameraState.IDLE)

    async def close(self) -> None:
        await self.cancel()

    async def reset(self) -> None:
        """Acknowledge an error and return to idle."""
        self._release_stream()
        self.error = None
        self.fallback_to_file_picker = False
        await self._set_state(CameraState.IDLE)

    def _release_stream(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream = None

    async def _enter_error(self, message: str) -> None:
        self._release_stream()
        self.error = message
        self.fallback_to_file_picker = True
        await self._set_state(CameraState.ERROR)

    async def _set_state(self, state: CameraState) -> None:
        previous = self.state
        self.state = state
        logger.debug(f"Camera {previous.value} -> {state.value}")
        await self.bus.publish(
            "camera.state",
            source="camera",
            previous=previous.value,
            state=state.value,
            error=self.error,
        )
