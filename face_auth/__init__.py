"""
Face Authentication System

Registers users from three head poses (front, left, right) and verifies
live captures against them: face localization, alignment to a canonical
112x112 face, embedding extraction with a fixed neural model, record
storage and cosine-similarity matching.
"""

__version__ = "1.0.0"
__author__ = "Face Authentication System Team"

from .alignment import FaceAligner
from .authenticator import FaceAuthenticator, RegistrationResult
from .embedding_generator import EmbeddingGenerator
from .face_detector import FaceDetector
from .pipeline import EmbeddingPipeline
from .preprocessing import FacePreprocessor
from .record_store import RecordStore, create_record_store
from .verifier import FaceVerifier, cosine_similarity

__all__ = [
    "FaceAligner",
    "FaceAuthenticator",
    "RegistrationResult",
    "EmbeddingGenerator",
    "FaceDetector",
    "EmbeddingPipeline",
    "FacePreprocessor",
    "RecordStore",
    "create_record_store",
    "FaceVerifier",
    "cosine_similarity",
]
