"""Frame sources for the scan loop: a live OpenCV camera and still image files."""

import asyncio
from pathlib import Path
from typing import Optional, Union

import cv2
import numpy as np

from ..utils.config import settings
from ..utils.error_handler import CaptureError
from ..utils.log import LoggerMixin
from ..utils.retry import retry


class CameraFrameSource(LoggerMixin):
    """OpenCV camera exposed as an async frame source."""

    def __init__(
        self,
        camera_index: Optional[int] = None,
        frame_width: int = 1920,
        frame_height: int = 1080,
        stabilization_frames: int = 1,
    ):
        self.cap = None
        self.camera_index = settings.CAMERA_INDEX if camera_index is None else camera_index
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.stabilization_frames = max(1, stabilization_frames)
        self.is_initialized = False

    def initialize(self) -> bool:
        """Open the camera, retrying while the device is still busy."""
        try:
            self._open()
        except CaptureError as e:
            self.logger.error("Camera initialization failed", camera_index=self.camera_index, error=str(e))
            return False

        self.is_initialized = True
        return True

    @retry(max_attempts=3, base_delay=0.5, max_delay=2.0, exceptions=CaptureError)
    def _open(self):
        self.cap = cv2.VideoCapture(self.camera_index)
        if not self.cap.isOpened():
            self.cap.release()
            raise CaptureError("Failed to open camera", {"camera_index": self.camera_index})

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
        self.cap.set(cv2.CAP_PROP_AUTOFOCUS, 1)

        ret, frame = self.cap.read()
        if not ret:
            self.cap.release()
            raise CaptureError("Failed to capture test frame", {"camera_index": self.camera_index})

        self.logger.info(
            "Camera initialized successfully",
            camera_index=self.camera_index,
            frame_size=f"{frame.shape[1]}x{frame.shape[0]}",
        )

    def read_frame(self) -> Optional[np.ndarray]:
        """
        Read one BGR frame, averaging several reads when stabilization is on.

        Returns None when the camera is not ready or yields nothing.
        """
        if not self.is_initialized:
            self.logger.error("Camera not initialized")
            return None

        frames = []
        for _ in range(self.stabilization_frames):
            ret, frame = self.cap.read()
            if ret:
                frames.append(frame)

        if not frames:
            self.logger.warning("No frames captured", camera_index=self.camera_index)
            return None
        if len(frames) == 1:
            return frames[0]
        return np.mean(frames, axis=0).astype(np.uint8)

    async def capture_frame(self) -> Optional[np.ndarray]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.read_frame)

    def release(self):
        if self.cap:
            self.cap.release()
            self.is_initialized = False
            self.logger.info("Camera released")

    def __enter__(self):
        if self.initialize():
            return self
        raise CaptureError("Failed to initialize camera", {"camera_index": self.camera_index})

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class ImageFileFrameSource(LoggerMixin):
    """Serves the same still image on every capture; used by ``identify``."""

    def __init__(self, image_path: Union[str, Path]):
        self.image_path = Path(image_path)
        self._frame: Optional[np.ndarray] = None

    def read_frame(self) -> Optional[np.ndarray]:
        if self._frame is None:
            frame = cv2.imread(str(self.image_path), cv2.IMREAD_COLOR)
            if frame is None:
                self.logger.error("Image could not be read", image_path=str(self.image_path))
                return None
            self._frame = frame
        return self._frame

    async def capture_frame(self) -> Optional[np.ndarray]:
        return self.read_frame()
