"""
Embedding Pipeline

Composes preprocessing and the embedder into a single image -> embedding
operation. Registration and verification depend on this unit only.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np

from .alignment import FaceAligner
from .embedding_generator import EmbeddingGenerator
from .face_detector import FaceDetector
from .face_types import EmbeddingResult
from .preprocessing import FacePreprocessor

logger = logging.getLogger(__name__)


class EmbeddingPipeline:
    """
    Image to embedding pipeline.

    Build it once at startup with `from_config` (or inject the parts), share
    it between callers and release it with `close()`. Calls are blocking and
    should run off any latency-sensitive thread.

    Usage:
        with EmbeddingPipeline.from_config(config) as pipeline:
            embedding = pipeline.generate_embedding(image)
    """

    def __init__(self, preprocessor: FacePreprocessor, embedder: EmbeddingGenerator):
        self.preprocessor = preprocessor
        self.embedder = embedder

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "EmbeddingPipeline":
        """Construct the detector, aligner and embedder from configuration."""
        preprocessor = FacePreprocessor(FaceDetector(config), FaceAligner(config))
        embedder = EmbeddingGenerator(config)
        return cls(preprocessor, embedder)

    @property
    def embedding_size(self) -> int:
        return self.embedder.embedding_size

    def generate_embedding(self, image: np.ndarray) -> Optional[np.ndarray]:
        """
        Embed the face in an image.

        Returns:
            The embedding, or None if no face was found or alignment failed

        Raises:
            InferenceBackendUnavailable: if the embedder is not loaded
        """
        result = self.generate_embedding_with_details(image)
        return result.embedding if result.ok else None

    def generate_embedding_with_details(self, image: np.ndarray) -> EmbeddingResult:
        """Embed the face in an image, keeping intermediates and the failing stage."""
        prepared = self.preprocessor.preprocess(image)
        if not prepared.ok:
            logger.warning(f"Preprocessing failed: {prepared.failure.value}")
            return EmbeddingResult(detection=prepared.detection, failure=prepared.failure)

        embedding = self.embedder.embed(prepared.canonical_face)
        logger.debug(f"Embedding generated successfully: {len(embedding)} dimensions")

        return EmbeddingResult(
            embedding=embedding,
            canonical_face=prepared.canonical_face,
            detection=prepared.detection,
        )

    def close(self):
        """Release the detector and the embedding model."""
        self.preprocessor.close()
        self.embedder.close()
        logger.info("Embedding pipeline closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
