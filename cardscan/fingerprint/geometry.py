"""Card-frame cropping, jittered region variants, quad rectification and blur gating."""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..core.constants import (
    DEFAULT_MAX_VARIANTS,
    MIN_TILE_SIDE,
    QUAD_CORNER_PENALTY,
    QUAD_MIN_AREA_RATIO,
    VARIANT_SEEDS,
)
from ..core.types import CardFrame, RegionFrame
from ..utils.log import get_logger

MIN_REGION_SIDE = 0.05


@dataclass(frozen=True)
class GeometryVariant:
    """One jittered crop of the hash region."""

    tag: str
    index: int
    frame: RegionFrame


def clamp01(value, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if number != number or number in (float("inf"), float("-inf")):
        return fallback
    return min(1.0, max(0.0, number))


def _round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def resolve_card_frame(card_frame: CardFrame, image_width: int,
                       image_height: int) -> Tuple[float, float, float, float]:
    """
    Resolve a card frame to (left, top, width, height) ratios of the image.

    Without an explicit height, the height is derived from the aspect ratio
    so that the card keeps its physical proportions in pixel space.
    """
    left = clamp01(card_frame.left, 0.0)
    top = clamp01(card_frame.top, 0.0)
    width = clamp01(card_frame.width, 1.0)

    if card_frame.height is not None and clamp01(card_frame.height, 0.0) > 0:
        return left, top, width, clamp01(card_frame.height, 1.0)

    aspect = card_frame.aspect_ratio or 0
    if aspect > 0 and image_width > 0 and image_height > 0:
        height = (width * image_width) / (aspect * image_height)
        return left, top, width, clamp01(height, 1.0)

    return left, top, width, 1.0


def pixel_rect(length_x: int, length_y: int, left: float, top: float,
               width: float, height: float) -> Tuple[int, int, int, int]:
    """Convert ratios to an (x, y, w, h) pixel rectangle that stays inside the image."""
    origin_x = min(max(0, length_x - 1), max(0, _round_half_up(length_x * left)))
    origin_y = min(max(0, length_y - 1), max(0, _round_half_up(length_y * top)))
    rect_w = max(1, min(_round_half_up(length_x * width), length_x - origin_x))
    rect_h = max(1, min(_round_half_up(length_y * height), length_y - origin_y))
    return origin_x, origin_y, rect_w, rect_h


def crop_card(image: np.ndarray, card_frame: CardFrame) -> np.ndarray:
    image_height, image_width = image.shape[:2]
    left, top, width, height = resolve_card_frame(card_frame, image_width, image_height)
    x, y, w, h = pixel_rect(image_width, image_height, left, top, width, height)
    return image[y:y + h, x:x + w]


def crop_region(card_image: np.ndarray, region: RegionFrame) -> np.ndarray:
    card_height, card_width = card_image.shape[:2]
    x, y, w, h = pixel_rect(card_width, card_height, region.left, region.top,
                            region.width, region.height)
    return card_image[y:y + h, x:x + w]


def clamp_region(left: float, top: float, width: float, height: float) -> RegionFrame:
    """Clamp a region into the unit square, keeping its size where possible."""
    width = min(1.0, max(MIN_REGION_SIDE, width))
    height = min(1.0, max(MIN_REGION_SIDE, height))
    left = min(1.0 - width, max(0.0, left))
    top = min(1.0 - height, max(0.0, top))
    return RegionFrame(left=left, top=top, width=width, height=height)


def build_variants(base: RegionFrame, max_variants: int = DEFAULT_MAX_VARIANTS) -> List[GeometryVariant]:
    """
    Build the jittered crops of a region, in seed order.

    Translations shift the region by a fraction of the card; scales grow or
    shrink it about its centre. Every variant is clamped into the card.
    """
    count = max(1, min(len(VARIANT_SEEDS), int(max_variants or DEFAULT_MAX_VARIANTS)))
    base_frame = clamp_region(
        clamp01(base.left, 0.0),
        clamp01(base.top, 0.0),
        clamp01(base.width, 1.0),
        clamp01(base.height, 1.0),
    )

    variants = []
    for index, (tag, dx, dy, scale) in enumerate(VARIANT_SEEDS[:count]):
        width = base_frame.width * scale
        height = base_frame.height * scale
        frame = clamp_region(
            base_frame.left + dx - (width - base_frame.width) / 2,
            base_frame.top + dy - (height - base_frame.height) / 2,
            width,
            height,
        )
        variants.append(GeometryVariant(tag=tag, index=index, frame=frame))
    return variants


def is_tile_too_small(tile: np.ndarray, min_side: int = MIN_TILE_SIDE) -> bool:
    return tile.size == 0 or tile.shape[0] < min_side or tile.shape[1] < min_side


def laplacian_variance(gray: np.ndarray) -> float:
    return float(cv2.Laplacian(gray, cv2.CV_64F).var())


def is_blurry(gray: np.ndarray, floor: float) -> bool:
    """Hard blur gate: tiles under the variance floor are never hashed."""
    return laplacian_variance(gray) < floor


def quad_area(corners: np.ndarray) -> float:
    """Shoelace area of a closed polygon."""
    xs = corners[:, 0].astype(np.float64)
    ys = corners[:, 1].astype(np.float64)
    return float(abs(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1))) / 2.0)


class QuadDetector:
    """Finds the card's four corners inside a tile and rectifies it."""

    def __init__(self, min_area_ratio: float = QUAD_MIN_AREA_RATIO,
                 corner_penalty: float = QUAD_CORNER_PENALTY):
        self.logger = get_logger(__name__)
        self.min_area_ratio = min_area_ratio
        self.corner_penalty = corner_penalty

    def detect(self, gray: np.ndarray) -> Optional[np.ndarray]:
        """
        Locate one edge-energy peak per quadrant.

        Each quadrant scores pixels by normalised Sobel magnitude minus a
        penalty proportional to the distance from the tile's outer corner.

        Returns:
            Corners ordered top-left, top-right, bottom-right, bottom-left, or
            None when the quadrilateral covers too little of the tile
        """
        height, width = gray.shape[:2]
        if height < 2 or width < 2:
            return None

        grad_x = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
        grad_y = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
        magnitude = np.sqrt(grad_x * grad_x + grad_y * grad_y)
        peak = float(magnitude.max())
        if peak <= 0:
            return None
        magnitude /= peak

        half_w, half_h = width // 2, height // 2
        diagonal = float(np.hypot(max(1, half_w), max(1, half_h)))
        quadrants = (
            (0, half_h, 0, half_w, (0, 0)),
            (0, half_h, half_w, width, (width - 1, 0)),
            (half_h, height, half_w, width, (width - 1, height - 1)),
            (half_h, height, 0, half_w, (0, height - 1)),
        )

        corners = []
        for y1, y2, x1, x2, (corner_x, corner_y) in quadrants:
            if y2 <= y1 or x2 <= x1:
                return None
            ys, xs = np.mgrid[y1:y2, x1:x2]
            distance = np.hypot(xs - corner_x, ys - corner_y)
            score = magnitude[y1:y2, x1:x2] - self.corner_penalty * distance / diagonal
            flat_index = int(np.argmax(score))
            row, col = np.unravel_index(flat_index, score.shape)
            corners.append((x1 + col, y1 + row))

        corners = np.array(corners, dtype=np.float32)
        area = quad_area(corners)
        if area <= self.min_area_ratio * width * height:
            self.logger.debug("Quad rejected", area=area, tile_area=width * height)
            return None
        return corners

    def rectify(self, gray: np.ndarray, corners: np.ndarray, out_w: int, out_h: int) -> np.ndarray:
        """Bilinear perspective warp of the quad onto an out_w x out_h tile."""
        dst_points = np.array(
            [[0, 0], [out_w - 1, 0], [out_w - 1, out_h - 1], [0, out_h - 1]],
            dtype=np.float32,
        )
        matrix = cv2.getPerspectiveTransform(corners.astype(np.float32), dst_points)
        return cv2.warpPerspective(gray, matrix, (out_w, out_h), flags=cv2.INTER_LINEAR)


# Global singleton
quad_detector = QuadDetector()
