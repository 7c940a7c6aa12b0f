"""
Embedding Generation Module

Converts canonical face images to fixed-length vectors with a pretrained
face-embedding network. Includes input normalization, L2 normalization of the
output and explicit model lifecycle management.
"""

import logging
import os
import threading
from typing import Any, Dict, Optional, Union

import cv2
import numpy as np
import torch
from facenet_pytorch import InceptionResnetV1

from .errors import EmbeddingDimensionMismatch, InferenceBackendUnavailable
from .face_types import CanonicalFace

logger = logging.getLogger(__name__)


class EmbeddingGenerator:
    """Generate face embeddings with a fixed-size neural model."""

    def __init__(self, config: Dict[str, Any], model: Optional[torch.nn.Module] = None):
        """
        Initialize embedding generator and load the model.

        Args:
            config: Configuration dictionary with embedding settings
            model: Already constructed model to use instead of loading one

        Raises:
            InferenceBackendUnavailable: if the model cannot be loaded
        """
        self.config = config.get('embedding', {})
        self.backend = self.config.get('backend', 'torchscript')
        self.model_path = self.config.get('model_path', 'models/edgeface_s.pt')
        self.input_size = int(self.config.get('input_size', 112))
        self.embedding_size = int(self.config.get('embedding_size', 512))

        self.device = torch.device('cuda' if torch.cuda.is_available() and
                                   config.get('performance', {}).get('use_gpu', False)
                                   else 'cpu')

        self._lock = threading.Lock()
        self.model = None

        if model is not None:
            self.backend = 'injected'
            self.model = model.eval().to(self.device)
        else:
            self._initialize_model()

        logger.info(f"Embedding generator initialized with backend: {self.backend}")

    def _initialize_model(self):
        """Load the configured model once."""
        try:
            if self.backend == 'torchscript':
                if not os.path.exists(self.model_path):
                    raise FileNotFoundError(f"Model artifact not found: {self.model_path}")
                self.model = torch.jit.load(self.model_path, map_location=self.device).eval()
            elif self.backend == 'facenet':
                pretrained = self.config.get('pretrained', 'vggface2')
                self.model = InceptionResnetV1(pretrained=pretrained).eval().to(self.device)
            else:
                raise ValueError(f"Unsupported embedding backend: {self.backend}")
        except Exception as e:
            logger.error(f"Failed to load embedding model: {e}")
            raise InferenceBackendUnavailable(f"Embedding model could not be loaded: {e}") from e

        logger.info(f"Embedding model loaded ({self.backend}) on {self.device}")

    @property
    def is_loaded(self) -> bool:
        return self.model is not None

    def preprocess(self, face_image: np.ndarray) -> torch.Tensor:
        """
        Prepare an RGB face for the model.

        Resizes to the model input size if needed and maps [0, 255] to
        [-1, 1] with (value - 127.5) / 127.5.

        Returns:
            Float tensor of shape (1, 3, input_size, input_size)
        """
        if face_image.shape[:2] != (self.input_size, self.input_size):
            logger.warning(
                f"Face size {face_image.shape[1]}x{face_image.shape[0]} differs from "
                f"model input {self.input_size}x{self.input_size}, resizing"
            )
            face_image = cv2.resize(face_image, (self.input_size, self.input_size),
                                    interpolation=cv2.INTER_LINEAR)

        normalized = (face_image.astype(np.float32) - 127.5) / 127.5
        tensor = torch.from_numpy(np.ascontiguousarray(normalized.transpose(2, 0, 1)))
        return tensor.unsqueeze(0)

    def embed(self, face: Union[CanonicalFace, np.ndarray]) -> np.ndarray:
        """
        Generate an embedding from a canonical face.

        Args:
            face: CanonicalFace or RGB uint8 image

        Returns:
            Read-only float32 vector of length embedding_size, L2-normalized
            unless the raw output was all zeros

        Raises:
            InferenceBackendUnavailable: if the model is not loaded
            EmbeddingDimensionMismatch: if the model output has the wrong size
        """
        if self.model is None:
            raise InferenceBackendUnavailable("Embedding model is not loaded")

        face_image = face.image if isinstance(face, CanonicalFace) else face
        if face_image is None or face_image.size == 0:
            raise ValueError("Empty face image")

        face_tensor = self.preprocess(face_image).to(self.device)

        with self._lock:
            if self.model is None:
                raise InferenceBackendUnavailable("Embedding model is not loaded")
            with torch.no_grad():
                output = self.model(face_tensor)

        embedding = output.detach().cpu().numpy().astype(np.float32).reshape(-1)
        if embedding.size != self.embedding_size:
            raise EmbeddingDimensionMismatch(
                self.embedding_size, int(embedding.size),
                f"Model produced {embedding.size} values, expected {self.embedding_size}"
            )

        embedding = self.normalize_embedding(embedding)
        embedding.flags.writeable = False
        return embedding

    @staticmethod
    def normalize_embedding(embedding: np.ndarray) -> np.ndarray:
        """
        Normalize embedding vector using L2 normalization.

        Args:
            embedding: Raw embedding vector

        Returns:
            Unit-norm vector, or the input unchanged when its norm is zero
        """
        if embedding is None or len(embedding) == 0:
            return embedding

        norm = np.linalg.norm(embedding)
        if norm == 0:
            return embedding

        return (embedding / norm).astype(np.float32)

    def validate_embedding(self, embedding: np.ndarray) -> Dict[str, Any]:
        """
        Validate embedding quality and consistency.

        Args:
            embedding: Generated embedding vector

        Returns:
            Validation results
        """
        if embedding is None:
            return {'valid': False, 'reason': 'None embedding'}

        if len(embedding) != self.embedding_size:
            return {'valid': False, 'reason': f'Unexpected size {len(embedding)}'}

        if np.any(np.isnan(embedding)) or np.any(np.isinf(embedding)):
            return {'valid': False, 'reason': 'NaN or infinite values'}

        magnitude = float(np.linalg.norm(embedding))
        if magnitude == 0:
            return {'valid': False, 'reason': 'Zero magnitude'}

        return {
            'valid': True,
            'size': len(embedding),
            'magnitude': magnitude,
            'is_normalized': abs(magnitude - 1.0) < 1e-5,
        }

    def close(self):
        """Release the model. Later calls to `embed` fail."""
        with self._lock:
            self.model = None
        logger.info("Embedding model released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
