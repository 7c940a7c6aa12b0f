"""
User Record Store

Persists one record per user name holding the front, left and right pose
embeddings. Backends: in-memory, a pickle file of float32 blobs, and ChromaDB.
"""

import logging
import os
import pickle
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np

from .errors import EmbeddingDimensionMismatch, StoreUnavailable
from .face_types import Pose, UserRecord

logger = logging.getLogger(__name__)

STORE_FORMAT_VERSION = '1.0'


def embedding_to_blob(embedding: np.ndarray) -> bytes:
    """Serialize an embedding as little-endian float32 bytes."""
    return np.asarray(embedding, dtype='<f4').reshape(-1).tobytes()


def embedding_from_blob(blob: bytes) -> np.ndarray:
    """Deserialize a little-endian float32 blob into a read-only embedding."""
    if len(blob) % 4 != 0:
        raise ValueError(f"Embedding blob length {len(blob)} is not a multiple of 4")
    embedding = np.frombuffer(blob, dtype='<f4').astype(np.float32)
    embedding.flags.writeable = False
    return embedding


def _frozen(embedding: np.ndarray) -> np.ndarray:
    frozen = np.array(embedding, dtype=np.float32).reshape(-1)
    frozen.flags.writeable = False
    return frozen


def _copy_record(record: UserRecord) -> UserRecord:
    return UserRecord(
        user_name=record.user_name,
        front_embedding=_frozen(record.front_embedding),
        left_embedding=_frozen(record.left_embedding),
        right_embedding=_frozen(record.right_embedding),
    )


class RecordStore(ABC):
    """
    Named record storage.

    Reads may run concurrently. Writers for the same user name serialize on
    `write_lock(name)`; every write replaces all three embeddings at once.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config.get('record_store', {})
        self.embedding_size = int(config.get('embedding', {}).get('embedding_size', 512))
        self._locks_guard = threading.Lock()
        # name -> [lock, holders + waiters]
        self._write_locks: Dict[str, list] = {}

    @contextmanager
    def write_lock(self, user_name: str):
        """Serialize read-modify-write sequences for one user name."""
        with self._locks_guard:
            entry = self._write_locks.setdefault(user_name, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._write_locks[user_name]

    def validate_record(self, record: UserRecord):
        """
        Check a record before writing it.

        Raises:
            ValueError: if the user name is empty
            EmbeddingDimensionMismatch: if any pose has the wrong length
        """
        if not record.user_name:
            raise ValueError("User name must not be empty")
        for embedding in record.embeddings:
            if len(embedding) != self.embedding_size:
                raise EmbeddingDimensionMismatch(
                    self.embedding_size, len(embedding),
                    f"Record for '{record.user_name}' has a {len(embedding)}-dim embedding, "
                    f"store expects {self.embedding_size}"
                )

    @abstractmethod
    def get_by_name(self, user_name: str) -> Optional[UserRecord]:
        """Return the record for a user name, or None."""

    @abstractmethod
    def insert(self, record: UserRecord):
        """Create a record. Raises ValueError if the name already exists."""

    @abstractmethod
    def update(self, record: UserRecord):
        """Replace a record wholesale. Raises KeyError if the name is unknown."""

    @abstractmethod
    def delete_all(self):
        """Remove every record."""

    @abstractmethod
    def list_names(self) -> List[str]:
        """Sorted user names."""

    def has_any_records(self) -> bool:
        return len(self.list_names()) > 0

    def close(self):
        logger.debug(f"{type(self).__name__} closed")


class InMemoryRecordStore(RecordStore):
    """Records held in a dictionary; subclasses persist it in `_persist`."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self._records: Dict[str, UserRecord] = {}
        self._data_lock = threading.RLock()

    def get_by_name(self, user_name: str) -> Optional[UserRecord]:
        with self._data_lock:
            record = self._records.get(user_name)
        return _copy_record(record) if record is not None else None

    def insert(self, record: UserRecord):
        self.validate_record(record)
        with self._data_lock:
            if record.user_name in self._records:
                raise ValueError(f"User '{record.user_name}' already exists")
            records = dict(self._records)
            records[record.user_name] = _copy_record(record)
            self._commit(records)
        logger.info(f"Inserted record for user '{record.user_name}'")

    def update(self, record: UserRecord):
        self.validate_record(record)
        with self._data_lock:
            if record.user_name not in self._records:
                raise KeyError(record.user_name)
            records = dict(self._records)
            records[record.user_name] = _copy_record(record)
            self._commit(records)
        logger.info(f"Updated record for user '{record.user_name}'")

    def delete_all(self):
        with self._data_lock:
            count = len(self._records)
            self._commit({})
        logger.info(f"Deleted {count} user record(s)")

    def list_names(self) -> List[str]:
        with self._data_lock:
            return sorted(self._records)

    def _commit(self, records: Dict[str, UserRecord]):
        # Persist first so a failed write leaves memory untouched
        self._persist(records)
        self._records = records

    def _persist(self, records: Dict[str, UserRecord]):
        pass


class PickleRecordStore(InMemoryRecordStore):
    """Records persisted to a pickle file as float32 blobs per pose."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.database_file = self.config.get('database_file', 'data/users.pkl')
        self.load_database()

    def _persist(self, records: Dict[str, UserRecord]):
        data = {
            'version': STORE_FORMAT_VERSION,
            'embedding_size': self.embedding_size,
            'save_timestamp': datetime.now().isoformat(),
            'users': {
                name: {
                    Pose.FRONT.value: embedding_to_blob(record.front_embedding),
                    Pose.LEFT.value: embedding_to_blob(record.left_embedding),
                    Pose.RIGHT.value: embedding_to_blob(record.right_embedding),
                }
                for name, record in records.items()
            },
        }

        tmp_file = f"{self.database_file}.tmp"
        try:
            directory = os.path.dirname(self.database_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_file, 'wb') as f:
                pickle.dump(data, f)
            os.replace(tmp_file, self.database_file)
        except OSError as e:
            logger.error(f"Failed to save database: {e}")
            raise StoreUnavailable(f"Could not write {self.database_file}: {e}") from e

        logger.debug(f"Database saved to {self.database_file}")

    def load_database(self):
        """Load records from the pickle file, if it exists."""
        if not os.path.exists(self.database_file):
            logger.info("No existing database found, starting fresh")
            return

        try:
            with open(self.database_file, 'rb') as f:
                data = pickle.load(f)
            if not isinstance(data, dict) or not isinstance(data.get('users', {}), dict):
                raise ValueError(f"Unexpected database layout: {type(data).__name__}")
            records = {
                name: UserRecord(
                    user_name=name,
                    front_embedding=embedding_from_blob(blobs[Pose.FRONT.value]),
                    left_embedding=embedding_from_blob(blobs[Pose.LEFT.value]),
                    right_embedding=embedding_from_blob(blobs[Pose.RIGHT.value]),
                )
                for name, blobs in data.get('users', {}).items()
            }
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError, ImportError,
                KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to load database: {e}")
            raise StoreUnavailable(f"Could not read {self.database_file}: {e}") from e

        stored_size = data.get('embedding_size')
        if stored_size is not None and stored_size != self.embedding_size:
            logger.warning(
                f"Database was written for {stored_size}-dim embeddings, "
                f"current model produces {self.embedding_size}"
            )

        with self._data_lock:
            self._records = records
        logger.info(f"Database loaded from {self.database_file}: {len(records)} user(s)")


class ChromaRecordStore(RecordStore):
    """Records stored in a ChromaDB collection, one entry per pose."""

    POSES = (Pose.FRONT, Pose.LEFT, Pose.RIGHT)

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        import chromadb

        self.chroma_path = self.config.get('chroma_path', 'data/chroma')
        self.collection_name = self.config.get('collection', 'user_embeddings')
        try:
            self.client = chromadb.PersistentClient(path=self.chroma_path)
            self.collection = self.client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"}
            )
        except Exception as e:
            logger.error(f"Failed to open ChromaDB at {self.chroma_path}: {e}")
            raise StoreUnavailable(f"ChromaDB unavailable: {e}") from e
        logger.info(f"ChromaDB record store ready: {self.chroma_path}/{self.collection_name}")

    @staticmethod
    def _entry_id(user_name: str, pose: Pose) -> str:
        return f"{user_name}::{pose.value}"

    def _entries(self, record: UserRecord):
        ids, embeddings, metadatas = [], [], []
        for pose, embedding in zip(self.POSES, record.embeddings):
            ids.append(self._entry_id(record.user_name, pose))
            embeddings.append(np.asarray(embedding, dtype=np.float32).tolist())
            metadatas.append({'user_name': record.user_name, 'pose': pose.value})
        return ids, embeddings, metadatas

    def get_by_name(self, user_name: str) -> Optional[UserRecord]:
        try:
            result = self.collection.get(
                ids=[self._entry_id(user_name, pose) for pose in self.POSES],
                include=['embeddings', 'metadatas']
            )
        except Exception as e:
            raise StoreUnavailable(f"ChromaDB read failed: {e}") from e

        by_pose = {}
        for embedding, metadata in zip(result['embeddings'], result['metadatas']):
            by_pose[metadata['pose']] = _frozen(np.asarray(embedding, dtype=np.float32))

        if not by_pose:
            return None
        if len(by_pose) != len(self.POSES):
            logger.warning(f"Incomplete record for user '{user_name}': {sorted(by_pose)}")
            return None

        return UserRecord(
            user_name=user_name,
            front_embedding=by_pose[Pose.FRONT.value],
            left_embedding=by_pose[Pose.LEFT.value],
            right_embedding=by_pose[Pose.RIGHT.value],
        )

    def insert(self, record: UserRecord):
        self.validate_record(record)
        if self.get_by_name(record.user_name) is not None:
            raise ValueError(f"User '{record.user_name}' already exists")
        ids, embeddings, metadatas = self._entries(record)
        try:
            # Upsert replaces pose entries left over from an incomplete record
            self.collection.upsert(ids=ids, embeddings=embeddings, metadatas=metadatas)
        except Exception as e:
            raise StoreUnavailable(f"ChromaDB insert failed: {e}") from e
        logger.info(f"Inserted record for user '{record.user_name}'")

    def update(self, record: UserRecord):
        self.validate_record(record)
        if self.get_by_name(record.user_name) is None:
            raise KeyError(record.user_name)
        ids, embeddings, metadatas = self._entries(record)
        try:
            self.collection.update(ids=ids, embeddings=embeddings, metadatas=metadatas)
        except Exception as e:
            raise StoreUnavailable(f"ChromaDB update failed: {e}") from e
        logger.info(f"Updated record for user '{record.user_name}'")

    def delete_all(self):
        try:
            ids = self.collection.get(include=[])['ids']
            if ids:
                self.collection.delete(ids=ids)
        except Exception as e:
            raise StoreUnavailable(f"ChromaDB delete failed: {e}") from e
        logger.info(f"Deleted {len(ids) // len(self.POSES)} user record(s)")

    def list_names(self) -> List[str]:
        try:
            metadatas = self.collection.get(include=['metadatas'])['metadatas']
        except Exception as e:
            raise StoreUnavailable(f"ChromaDB read failed: {e}") from e
        return sorted({metadata['user_name'] for metadata in metadatas})


def create_record_store(config: Dict[str, Any]) -> RecordStore:
    """Build the record store selected by `record_store.backend`."""
    backend = config.get('record_store', {}).get('backend', 'pickle')
    if backend == 'memory':
        return InMemoryRecordStore(config)
    if backend == 'pickle':
        return PickleRecordStore(config)
    if backend == 'chromadb':
        return ChromaRecordStore(config)
    raise ValueError(f"Unsupported record store backend: {backend}")
