"""
Face Alignment Module

Turns an image plus a face detection into a square canonical face. When both
eye landmarks are available the face is rotated, scaled and translated so the
eyes are level at fixed relative positions; otherwise the padded bounding box
is cropped and resized.
"""

import math
import logging
from typing import Any, Dict, Optional

import cv2
import numpy as np

from .errors import AlignmentFailed
from .face_types import AlignmentPolicy, CanonicalFace, FaceDetection

logger = logging.getLogger(__name__)


class EyeAlignment:
    """Similarity transform placing the eye midpoint at a fixed position."""

    policy = AlignmentPolicy.EYES

    def __init__(self, eye_distance_ratio: float = 0.4, eye_height_ratio: float = 1.0 / 3.0):
        self.eye_distance_ratio = eye_distance_ratio
        self.eye_height_ratio = eye_height_ratio

    def transform_matrix(self, detection: FaceDetection, target_size: int) -> np.ndarray:
        """
        Build the 2x3 affine matrix mapping source pixels to the canonical face.

        Raises:
            AlignmentFailed: if the eye landmarks are missing or coincide
        """
        landmarks = detection.landmarks
        if not landmarks.has_eyes:
            raise AlignmentFailed("Eye landmarks are required for eye alignment")

        (lx, ly), (rx, ry) = landmarks.left_eye, landmarks.right_eye
        dx, dy = rx - lx, ry - ly
        eye_distance = math.sqrt(dx * dx + dy * dy)
        if eye_distance < 1e-6:
            raise AlignmentFailed("Eye landmarks coincide")

        angle = math.degrees(math.atan2(dy, dx))
        center = ((lx + rx) / 2.0, (ly + ry) / 2.0)
        scale = (target_size * self.eye_distance_ratio) / eye_distance

        # Rotates by -angle in image space and scales about the eye midpoint
        M = cv2.getRotationMatrix2D(center, angle, scale)
        M[0, 2] += target_size / 2.0 - center[0]
        M[1, 2] += target_size * self.eye_height_ratio - center[1]
        return M

    def apply(self, image: np.ndarray, detection: FaceDetection, target_size: int) -> np.ndarray:
        M = self.transform_matrix(detection, target_size)
        return cv2.warpAffine(
            image, M, (target_size, target_size),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=0
        )


class BoxAlignment:
    """Crop the padded bounding box and resize it to the target size."""

    def __init__(self, padding: float, policy: AlignmentPolicy):
        self.padding = padding
        self.policy = policy

    def crop_region(self, image: np.ndarray, detection: FaceDetection):
        """Padded crop rectangle clamped to the image, as (left, top, right, bottom)."""
        img_h, img_w = image.shape[:2]
        box = detection.bbox

        pad_x = int(box.width * self.padding)
        pad_y = int(box.height * self.padding)

        left = min(max(0, int(box.left) - pad_x), img_w)
        top = min(max(0, int(box.top) - pad_y), img_h)
        right = max(0, min(img_w, int(box.right) + pad_x))
        bottom = max(0, min(img_h, int(box.bottom) + pad_y))

        if right <= left or bottom <= top:
            raise AlignmentFailed(
                f"Face box {box} does not overlap the {img_w}x{img_h} image"
            )
        return left, top, right, bottom

    def apply(self, image: np.ndarray, detection: FaceDetection, target_size: int) -> np.ndarray:
        left, top, right, bottom = self.crop_region(image, detection)
        crop = image[top:bottom, left:right]
        return cv2.resize(crop, (target_size, target_size), interpolation=cv2.INTER_LINEAR)


class FaceAligner:
    """
    Face aligner selecting a strategy per detection.

    Usage:
        aligner = FaceAligner(config)
        canonical = aligner.align(image, detection)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = (config or {}).get('alignment', {})
        self.target_size = int(self.config.get('target_size', 112))

        self.strategies = {
            AlignmentPolicy.EYES: EyeAlignment(
                eye_distance_ratio=self.config.get('eye_distance_ratio', 0.4),
                eye_height_ratio=self.config.get('eye_height_ratio', 1.0 / 3.0),
            ),
            AlignmentPolicy.PADDED_BOX: BoxAlignment(
                self.config.get('padded_padding', 0.3), AlignmentPolicy.PADDED_BOX
            ),
            AlignmentPolicy.SIMPLE_BOX: BoxAlignment(
                self.config.get('simple_padding', 0.2), AlignmentPolicy.SIMPLE_BOX
            ),
        }

        fallback = self.config.get('fallback_policy', AlignmentPolicy.PADDED_BOX.value)
        try:
            self.fallback_policy = AlignmentPolicy(fallback)
        except ValueError:
            raise ValueError(f"Unknown alignment fallback policy: {fallback}") from None
        if self.fallback_policy is AlignmentPolicy.EYES:
            raise ValueError("The fallback policy must be a bounding-box policy")

    def select_policy(self, detection: FaceDetection) -> AlignmentPolicy:
        """Eye alignment when both eyes are known, else the box fallback."""
        if detection.landmarks.has_eyes:
            return AlignmentPolicy.EYES
        return self.fallback_policy

    def align(self, image: np.ndarray, detection: FaceDetection,
              target_size: Optional[int] = None) -> CanonicalFace:
        """
        Align a detected face into a canonical square image.

        Args:
            image: Source RGB image
            detection: Detection to align
            target_size: Output side length (defaults to the configured size)

        Returns:
            CanonicalFace of exactly target_size x target_size

        Raises:
            AlignmentFailed: on degenerate geometry or an empty crop
        """
        return self.align_with_policy(image, detection, self.select_policy(detection), target_size)

    def align_with_policy(self, image: np.ndarray, detection: FaceDetection,
                          policy: AlignmentPolicy,
                          target_size: Optional[int] = None) -> CanonicalFace:
        """Align using a named policy regardless of the available landmarks."""
        if image is None or image.size == 0:
            raise AlignmentFailed("Empty source image")

        size = int(target_size or self.target_size)
        if size <= 0:
            raise AlignmentFailed(f"Invalid target size: {size}")

        strategy = self.strategies[policy]
        try:
            aligned = strategy.apply(image, detection, size)
        except cv2.error as e:
            raise AlignmentFailed(f"OpenCV failed to align face: {e}") from e

        if aligned is None or aligned.shape[:2] != (size, size):
            raise AlignmentFailed(f"Aligned face has unexpected shape {getattr(aligned, 'shape', None)}")

        logger.debug(f"Face aligned with policy {policy.value}: {size}x{size}")
        return CanonicalFace(image=aligned, policy=policy)
