"""Capture package: camera and still-image frame sources."""

from .camera import CameraFrameSource, ImageFileFrameSource

__all__ = [
    "CameraFrameSource",
    "ImageFileFrameSource",
]
