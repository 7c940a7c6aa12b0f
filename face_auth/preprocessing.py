"""
Preprocessing Module

Localizes the subject's face and aligns it into a canonical face ready for
embedding. Failures are returned as typed results rather than raised.
"""

import logging
from typing import List, Optional

import numpy as np

from .alignment import FaceAligner
from .errors import AlignmentFailed, FailureReason
from .face_detector import FaceDetector, largest_detection
from .face_types import FaceDetection, PreprocessResult

logger = logging.getLogger(__name__)


class FacePreprocessor:
    """Detect -> select largest face -> align."""

    def __init__(self, detector: FaceDetector, aligner: FaceAligner):
        self.detector = detector
        self.aligner = aligner

    @staticmethod
    def select_largest(detections: List[FaceDetection]) -> Optional[FaceDetection]:
        """Largest bounding-box area; the first one found wins ties."""
        return largest_detection(detections)

    def preprocess(self, image: np.ndarray) -> PreprocessResult:
        """
        Produce a canonical face for the single subject in an image.

        Args:
            image: RGB image

        Returns:
            PreprocessResult holding either the canonical face and its
            detection, or the failure reason
        """
        detections = self.detector.detect_faces(image)
        detection = self.select_largest(detections)
        if detection is None:
            logger.warning("No face detected in image")
            return PreprocessResult(failure=FailureReason.NO_FACE_DETECTED)

        if len(detections) > 1:
            logger.debug(f"{len(detections)} faces found, using the largest")

        try:
            canonical = self.aligner.align(image, detection)
        except AlignmentFailed as e:
            logger.warning(f"Face alignment failed: {e}")
            return PreprocessResult(detection=detection, failure=FailureReason.ALIGNMENT_FAILED)

        logger.debug(f"Face at {detection.bbox} aligned with policy {canonical.policy.value}")
        return PreprocessResult(canonical_face=canonical, detection=detection)

    def close(self):
        self.detector.close()
