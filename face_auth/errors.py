"""
Error Taxonomy

Exceptions raised by the face authentication core and the failure reasons
carried by typed pipeline results.
"""

from enum import Enum


class FailureReason(Enum):
    """Recoverable, stage-local reasons an image produced no embedding."""

    NO_FACE_DETECTED = "no_face_detected"
    ALIGNMENT_FAILED = "alignment_failed"


class FaceAuthError(Exception):
    """Base class for all face authentication errors."""


class NoFaceDetected(FaceAuthError):
    """The localization backend found no face in the image."""


class AlignmentFailed(FaceAuthError):
    """The selected detection could not be turned into a canonical face."""


class InferenceBackendUnavailable(FaceAuthError):
    """The embedding model is not loaded or could not be loaded."""


class EmbeddingDimensionMismatch(FaceAuthError):
    """Two embeddings (or a model output and its contract) differ in length."""

    def __init__(self, expected: int, actual: int, message: str = None):
        self.expected = expected
        self.actual = actual
        if message is None:
            message = f"Embedding dimension mismatch: {expected} vs {actual}"
        super().__init__(message)


class StoreUnavailable(FaceAuthError):
    """The record store backend could not be read or written."""


def error_for(reason: FailureReason, message: str = None) -> FaceAuthError:
    """Exception matching a typed failure reason."""
    if reason is FailureReason.NO_FACE_DETECTED:
        return NoFaceDetected(message or "No face detected in image")
    return AlignmentFailed(message or "Face alignment failed")
