"""
Face Verification Module

Decides whether a live capture matches the stored pose embeddings of a
claimed identity using cosine similarity against each pose.
"""

import logging
from typing import Any, Dict, Optional, Sequence

import numpy as np

from .errors import EmbeddingDimensionMismatch
from .face_types import VerificationResult
from .pipeline import EmbeddingPipeline

logger = logging.getLogger(__name__)


def _check_lengths(embedding1: np.ndarray, embedding2: np.ndarray):
    if len(embedding1) != len(embedding2):
        raise EmbeddingDimensionMismatch(
            len(embedding1), len(embedding2),
            f"Embeddings must have the same size: {len(embedding1)} vs {len(embedding2)}"
        )


def cosine_similarity(embedding1: np.ndarray, embedding2: np.ndarray) -> float:
    """
    Cosine similarity clamped into [0, 1].

    Negative similarities map to 0. A zero-magnitude vector scores 0.

    Raises:
        EmbeddingDimensionMismatch: if the vectors differ in length
    """
    _check_lengths(embedding1, embedding2)

    a = np.asarray(embedding1, dtype=np.float64).reshape(-1)
    b = np.asarray(embedding2, dtype=np.float64).reshape(-1)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        logger.warning("Zero magnitude vector detected")
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return min(1.0, max(0.0, similarity))


def euclidean_distance(embedding1: np.ndarray, embedding2: np.ndarray) -> float:
    """L2 distance; lower is more similar."""
    _check_lengths(embedding1, embedding2)
    a = np.asarray(embedding1, dtype=np.float64).reshape(-1)
    b = np.asarray(embedding2, dtype=np.float64).reshape(-1)
    return float(np.linalg.norm(a - b))


class FaceVerifier:
    """Match a captured image against a user's stored pose embeddings."""

    def __init__(self, pipeline: EmbeddingPipeline, config: Optional[Dict[str, Any]] = None):
        self.pipeline = pipeline
        self.config = (config or {}).get('verification', {})
        self.similarity_threshold = float(self.config.get('similarity_threshold', 0.5))

    def verify(self, captured_image: np.ndarray,
               stored_embeddings: Sequence[np.ndarray],
               threshold: Optional[float] = None) -> VerificationResult:
        """
        Verify a captured image against stored embeddings.

        A capture without a usable face is a non-match with score 0.

        Args:
            captured_image: Live RGB capture
            stored_embeddings: Front, left and right embeddings of the user
            threshold: Match threshold (defaults to the configured value)

        Returns:
            VerificationResult with the best pose similarity

        Raises:
            EmbeddingDimensionMismatch: if a stored embedding has the wrong size
        """
        if not stored_embeddings:
            raise ValueError("At least one stored embedding is required")

        captured = self.pipeline.generate_embedding(captured_image)
        if captured is None:
            logger.info("No usable face in captured image, reporting no match")
            return VerificationResult.no_match()

        return self.compare(captured, stored_embeddings, threshold)

    def compare(self, embedding: np.ndarray,
                stored_embeddings: Sequence[np.ndarray],
                threshold: Optional[float] = None) -> VerificationResult:
        """Best-of-poses decision for an already computed embedding."""
        if not stored_embeddings:
            raise ValueError("At least one stored embedding is required")

        if threshold is None:
            threshold = self.similarity_threshold

        similarities = [cosine_similarity(embedding, stored) for stored in stored_embeddings]
        for index, similarity in enumerate(similarities):
            logger.debug(f"Similarity with embedding {index}: {similarity:.4f}")

        max_similarity = max(similarities)
        is_match = max_similarity >= threshold

        logger.info(
            f"Verification result: {'MATCH' if is_match else 'NO MATCH'} "
            f"(max similarity {max_similarity:.4f}, threshold {threshold})"
        )
        return VerificationResult(is_match=is_match, score=max_similarity)
