"""Turn one captured frame into fingerprint candidates, one per geometry variant."""

from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from ..core.constants import DEFAULT_MAX_VARIANTS, DHASH_TILE, MIN_TILE_SIDE, PHASH_TILE
from ..core.types import CardFrame, Fingerprint, GrayscaleImage, RegionFrame
from ..utils.config import settings
from ..utils.log import LoggerMixin
from .geometry import (
    GeometryVariant,
    build_variants,
    crop_card,
    crop_region,
    is_blurry,
    quad_detector,
)
from .hashing import (
    compute_dhash64,
    compute_phash64,
    derive_bucket16,
    preprocess_for_hash,
    resize_nearest,
    split_hex64_to_hi_lo,
    to_grayscale,
)


class FingerprintExtractor(LoggerMixin):
    """Crops, gates and hashes every jittered variant of a card region."""

    def __init__(
        self,
        blur_floor: Optional[float] = None,
        quad_rectify: Optional[bool] = None,
        workers: Optional[int] = None,
        channel_order: str = "bgr",
    ):
        self.blur_floor = settings.BLUR_VARIANCE_FLOOR if blur_floor is None else blur_floor
        self.quad_rectify = settings.QUAD_RECTIFY_ENABLED if quad_rectify is None else quad_rectify
        self.workers = max(1, settings.HASH_WORKERS if workers is None else workers)
        self.channel_order = channel_order

    def extract(
        self,
        frame: np.ndarray,
        card_frame: Optional[CardFrame] = None,
        region_frame: Optional[RegionFrame] = None,
        max_variants: int = DEFAULT_MAX_VARIANTS,
    ) -> List[Fingerprint]:
        """
        Fingerprint every usable variant of the region inside the card.

        Variants rejected by the size or blur gate are omitted, so the result
        may be shorter than max_variants or empty. Output order follows
        variant order.
        """
        if frame is None or getattr(frame, "size", 0) == 0:
            return []

        try:
            card_image = crop_card(frame, card_frame or CardFrame())
            variants = build_variants(region_frame or RegionFrame.full_card(), max_variants)
        except Exception as e:
            self.logger.error("Card crop failed", error=str(e))
            return []

        if self.workers > 1 and len(variants) > 1:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(variants))) as pool:
                results = list(pool.map(lambda v: self._fingerprint_variant(card_image, v), variants))
        else:
            results = [self._fingerprint_variant(card_image, variant) for variant in variants]

        fingerprints = [fingerprint for fingerprint in results if fingerprint is not None]
        self.logger.debug(
            "Fingerprints extracted",
            variants=len(variants),
            fingerprints=len(fingerprints),
            tags=[fingerprint.variant_tag for fingerprint in fingerprints],
        )
        return fingerprints

    def fingerprint_image(
        self, image: np.ndarray, region_frame: Optional[RegionFrame] = None
    ) -> Optional[Fingerprint]:
        """Single non-jittered fingerprint of an image that already shows just the card."""
        if image is None or getattr(image, "size", 0) == 0:
            return None
        try:
            tile = crop_region(image, region_frame or RegionFrame.full_card())
            gray = to_grayscale(tile, channel_order=self.channel_order)
            return self._fingerprint_gray(gray, "base", 0, apply_blur_gate=False)
        except Exception as e:
            self.logger.error("Reference fingerprint failed", error=str(e))
            return None

    def _fingerprint_variant(self, card_image: np.ndarray, variant: GeometryVariant) -> Optional[Fingerprint]:
        try:
            tile = crop_region(card_image, variant.frame)
            gray = to_grayscale(tile, channel_order=self.channel_order)
            return self._fingerprint_gray(gray, variant.tag, variant.index)
        except Exception as e:
            self.logger.warning("Variant fingerprint failed", variant=variant.tag, error=str(e))
            return None

    def _fingerprint_gray(
        self, gray: GrayscaleImage, tag: str, index: int, apply_blur_gate: bool = True
    ) -> Optional[Fingerprint]:
        if gray.width < MIN_TILE_SIDE or gray.height < MIN_TILE_SIDE:
            self.logger.debug("Variant too small", variant=tag, width=gray.width, height=gray.height)
            return None

        if apply_blur_gate and is_blurry(gray.as_2d().copy(), self.blur_floor):
            self.logger.debug("Variant rejected by blur gate", variant=tag)
            return None

        phash_tile, dhash_tile = self._hash_tiles(preprocess_for_hash(gray))
        phash_split = split_hex64_to_hi_lo(compute_phash64(phash_tile))
        dhash_split = split_hex64_to_hi_lo(compute_dhash64(dhash_tile))
        if phash_split is None or dhash_split is None:
            return None

        phash_hi, phash_lo = phash_split
        dhash_hi, dhash_lo = dhash_split
        return Fingerprint(
            phash_hi=phash_hi,
            phash_lo=phash_lo,
            dhash_hi=dhash_hi,
            dhash_lo=dhash_lo,
            bucket16=derive_bucket16(phash_hi),
            variant_tag=tag,
            variant_index=index,
        )

    def _hash_tiles(self, gray: GrayscaleImage) -> Tuple[GrayscaleImage, GrayscaleImage]:
        if self.quad_rectify:
            plane = gray.as_2d().copy()
            corners = quad_detector.detect(plane)
            if corners is not None:
                return (
                    GrayscaleImage.from_array(quad_detector.rectify(plane, corners, *PHASH_TILE)),
                    GrayscaleImage.from_array(quad_detector.rectify(plane, corners, *DHASH_TILE)),
                )
        return (
            resize_nearest(gray, *PHASH_TILE),
            resize_nearest(gray, *DHASH_TILE),
        )
