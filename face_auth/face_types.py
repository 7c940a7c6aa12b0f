"""
Shared Data Types

Detections, canonical faces, user records and verification results passed
between the localization, alignment, embedding and verification stages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from .errors import FailureReason, error_for

Point = Tuple[float, float]


class AlignmentPolicy(Enum):
    """How a canonical face was (or should be) produced."""

    EYES = "eyes"
    PADDED_BOX = "padded"
    SIMPLE_BOX = "simple"


class Pose(Enum):
    """Head orientations captured at registration."""

    FRONT = "front"
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in source-image pixel coordinates."""

    left: float
    top: float
    right: float
    bottom: float

    @classmethod
    def from_xywh(cls, x: float, y: float, w: float, h: float) -> "BoundingBox":
        return cls(float(x), float(y), float(x + w), float(y + h))

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)


@dataclass(frozen=True)
class FaceLandmarks:
    """Optional five-point landmarks; `left_eye` is the image-left eye."""

    left_eye: Optional[Point] = None
    right_eye: Optional[Point] = None
    nose: Optional[Point] = None
    left_mouth: Optional[Point] = None
    right_mouth: Optional[Point] = None

    @property
    def has_eyes(self) -> bool:
        return self.left_eye is not None and self.right_eye is not None


@dataclass(frozen=True)
class FaceDetection:
    """One face reported by the localization backend."""

    bbox: BoundingBox
    landmarks: FaceLandmarks = field(default_factory=FaceLandmarks)
    confidence: Optional[float] = None

    @property
    def area(self) -> float:
        return self.bbox.area


@dataclass
class CanonicalFace:
    """Geometrically normalized square RGB face raster."""

    image: np.ndarray
    policy: AlignmentPolicy

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.shape[1], self.image.shape[0]


@dataclass
class UserRecord:
    """Three pose embeddings stored under a unique user name."""

    user_name: str
    front_embedding: np.ndarray
    left_embedding: np.ndarray
    right_embedding: np.ndarray

    @property
    def embeddings(self) -> List[np.ndarray]:
        return [self.front_embedding, self.left_embedding, self.right_embedding]

    @property
    def dimension(self) -> Optional[int]:
        """Shared embedding length, or None when the poses disagree."""
        sizes = {len(e) for e in self.embeddings}
        return sizes.pop() if len(sizes) == 1 else None

    def is_compatible(self, embedding_size: int) -> bool:
        return self.dimension == embedding_size


@dataclass(frozen=True)
class VerificationResult:
    is_match: bool
    score: float

    @classmethod
    def no_match(cls) -> "VerificationResult":
        return cls(is_match=False, score=0.0)


@dataclass
class PreprocessResult:
    """Outcome of localization + alignment for a single image."""

    canonical_face: Optional[CanonicalFace] = None
    detection: Optional[FaceDetection] = None
    failure: Optional[FailureReason] = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.canonical_face is not None

    def raise_for_failure(self):
        """Raise NoFaceDetected or AlignmentFailed if preprocessing failed."""
        if self.failure is not None:
            raise error_for(self.failure)


@dataclass
class EmbeddingResult:
    """Outcome of the full image-to-embedding pipeline, with diagnostics."""

    embedding: Optional[np.ndarray] = None
    canonical_face: Optional[CanonicalFace] = None
    detection: Optional[FaceDetection] = None
    failure: Optional[FailureReason] = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.embedding is not None

    def raise_for_failure(self):
        """Raise NoFaceDetected or AlignmentFailed if no embedding was produced."""
        if self.failure is not None:
            raise error_for(self.failure)
