"""
Face Authentication Module

Registration and login on top of the embedding pipeline, the verifier and the
user record store.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from .errors import EmbeddingDimensionMismatch
from .face_types import Pose, UserRecord, VerificationResult
from .pipeline import EmbeddingPipeline
from .record_store import RecordStore, create_record_store
from .verifier import FaceVerifier

logger = logging.getLogger(__name__)


@dataclass
class RegistrationResult:
    user_name: str
    success: bool
    is_update: bool = False
    failed_poses: List[Pose] = field(default_factory=list)


class FaceAuthenticator:
    """Face registration and verification for named users."""

    def __init__(self, config: Dict[str, Any],
                 pipeline: Optional[EmbeddingPipeline] = None,
                 record_store: Optional[RecordStore] = None):
        """
        Initialize the authenticator.

        Args:
            config: Configuration dictionary
            pipeline: Shared embedding pipeline (built from config if omitted)
            record_store: User record store (built from config if omitted)
        """
        self.config = config
        self.pipeline = pipeline if pipeline is not None else EmbeddingPipeline.from_config(config)
        self.record_store = record_store if record_store is not None else create_record_store(config)
        self.verifier = FaceVerifier(self.pipeline, config)

        self._stats_lock = threading.Lock()
        self.stats = self._empty_stats()
        logger.info("Face authenticator initialized successfully")

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'registrations': 0,
            'registration_updates': 0,
            'failed_registrations': 0,
            'verification_attempts': 0,
            'successful_verifications': 0,
            'session_start': datetime.now().isoformat()
        }

    def _count(self, key: str):
        with self._stats_lock:
            self.stats[key] += 1

    def register_user(self, user_name: str, front_image: np.ndarray,
                      left_image: np.ndarray, right_image: np.ndarray) -> RegistrationResult:
        """
        Register (or re-register) a user from three pose captures.

        Nothing is written unless all three poses produce an embedding.

        Args:
            user_name: Unique user name
            front_image: Frontal capture
            left_image: Head turned left
            right_image: Head turned right

        Returns:
            RegistrationResult listing any poses that need recapturing
        """
        if not user_name:
            raise ValueError("User name must not be empty")

        images = {Pose.FRONT: front_image, Pose.LEFT: left_image, Pose.RIGHT: right_image}
        embeddings = {}
        failed = []
        for pose, image in images.items():
            embedding = self.pipeline.generate_embedding(image)
            if embedding is None:
                failed.append(pose)
            else:
                embeddings[pose] = embedding

        if failed:
            self._count('failed_registrations')
            logger.warning(
                f"Registration for '{user_name}' failed for pose(s): "
                f"{', '.join(pose.value for pose in failed)}"
            )
            return RegistrationResult(user_name=user_name, success=False, failed_poses=failed)

        logger.debug(f"All embeddings generated for '{user_name}'")
        is_update = self.save_user_embeddings(
            user_name, embeddings[Pose.FRONT], embeddings[Pose.LEFT], embeddings[Pose.RIGHT]
        )
        return RegistrationResult(user_name=user_name, success=True, is_update=is_update)

    def save_user_embeddings(self, user_name: str, front_embedding: np.ndarray,
                             left_embedding: np.ndarray, right_embedding: np.ndarray) -> bool:
        """
        Insert a new record or replace an existing one.

        Returns:
            True if an existing record was replaced
        """
        record = UserRecord(
            user_name=user_name,
            front_embedding=front_embedding,
            left_embedding=left_embedding,
            right_embedding=right_embedding,
        )

        with self.record_store.write_lock(user_name):
            existing = self.record_store.get_by_name(user_name)
            if existing is None:
                self.record_store.insert(record)
                self._count('registrations')
                logger.info(f"Registered new user '{user_name}'")
                return False

            self.record_store.update(record)
            self._count('registration_updates')
            logger.info(f"Replaced embeddings for user '{user_name}'")
            return True

    def authenticate(self, user_name: str, image: np.ndarray,
                     threshold: Optional[float] = None) -> VerificationResult:
        """
        Verify a live capture against a registered user.

        Unknown users and captures without a usable face are reported as a
        plain non-match.

        Raises:
            EmbeddingDimensionMismatch: if the stored record was produced by
                an incompatible model
        """
        self._count('verification_attempts')

        record = self.record_store.get_by_name(user_name)
        if record is None:
            logger.info(f"No registered user '{user_name}'")
            return VerificationResult.no_match()

        if not record.is_compatible(self.pipeline.embedding_size):
            raise EmbeddingDimensionMismatch(
                self.pipeline.embedding_size, record.dimension or -1,
                f"Stored record for '{user_name}' is incompatible with the active model"
            )

        result = self.verifier.verify(image, record.embeddings, threshold)
        if result.is_match:
            self._count('successful_verifications')
        return result

    def get_user(self, user_name: str) -> Optional[UserRecord]:
        return self.record_store.get_by_name(user_name)

    def has_any_users(self) -> bool:
        return self.record_store.has_any_records()

    def list_users(self) -> List[str]:
        return self.record_store.list_names()

    def clear_all_users(self):
        """Delete every registered user."""
        self.record_store.delete_all()
        logger.info("All users cleared")

    def get_statistics(self) -> Dict[str, Any]:
        """Get authentication statistics."""
        with self._stats_lock:
            stats = dict(self.stats)
        attempts = stats['verification_attempts']
        return {
            **stats,
            'registered_users': len(self.record_store.list_names()),
            'match_rate': stats['successful_verifications'] / max(1, attempts),
        }

    def reset_statistics(self):
        with self._stats_lock:
            self.stats = self._empty_stats()

    def close(self):
        """Release the pipeline and the record store."""
        self.pipeline.close()
        self.record_store.close()
        logger.info("Face authenticator closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
