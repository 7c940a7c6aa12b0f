"""
Shared fixtures: a deterministic embedding model, a scripted detector and
synthetic face images.
"""

import os
import sys

import cv2
import numpy as np
import pytest
import torch
import torch.nn.functional as F

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_auth.alignment import FaceAligner
from face_auth.embedding_generator import EmbeddingGenerator
from face_auth.face_types import BoundingBox, FaceDetection, FaceLandmarks
from face_auth.pipeline import EmbeddingPipeline
from face_auth.preprocessing import FacePreprocessor

IMAGE_SIZE = 240
FACE_CENTER = (120.0, 120.0)
LEFT_EYE = (95.0, 100.0)
RIGHT_EYE = (145.0, 100.0)
FACE_BOX = (50.0, 30.0, 190.0, 210.0)
BACKGROUND = (40, 60, 80)

# Pure colors so eye blobs can be located after resampling
LEFT_EYE_COLOR = (255, 0, 0)
RIGHT_EYE_COLOR = (0, 0, 255)


class ProjectionModel(torch.nn.Module):
    """Tiny deterministic stand-in for a face-embedding network."""

    def __init__(self, embedding_size: int = 512, seed: int = 0):
        super().__init__()
        generator = torch.Generator().manual_seed(seed)
        self.register_buffer('weight', torch.randn(embedding_size, 3 * 8 * 8, generator=generator))

    def forward(self, x):
        pooled = F.adaptive_avg_pool2d(x, 8).flatten(1)
        return torch.matmul(pooled, self.weight.t())


class ZeroModel(torch.nn.Module):
    def __init__(self, embedding_size: int = 512):
        super().__init__()
        self.embedding_size = embedding_size

    def forward(self, x):
        return torch.zeros(x.shape[0], self.embedding_size)


class RecordingModel(ProjectionModel):
    """Projection model remembering the last input tensor."""

    def forward(self, x):
        self.last_input = x.clone()
        return super().forward(x)


class FakeDetector:
    """Returns scripted detections; blank (all-black) frames have no face."""

    def __init__(self, detections):
        self.detections = list(detections)
        self.calls = 0
        self.closed = False

    def detect_faces(self, image):
        self.calls += 1
        if image is None or image.size == 0 or image.max() == 0:
            return []
        return list(self.detections)

    def close(self):
        self.closed = True


def _transform(M, point):
    x, y = point
    return (float(M[0, 0] * x + M[0, 1] * y + M[0, 2]),
            float(M[1, 0] * x + M[1, 1] * y + M[1, 2]))


def make_face(angle: float = 0.0, skin=(200, 170, 150), with_eyes: bool = True):
    """
    Draw a synthetic face, optionally rotated about the image center.

    Returns:
        (RGB image, FaceDetection with landmarks mapped through the rotation)
    """
    image = np.zeros((IMAGE_SIZE, IMAGE_SIZE, 3), dtype=np.uint8)
    image[:] = BACKGROUND
    cv2.ellipse(image, (120, 120), (70, 90), 0, 0, 360, skin, -1)
    cv2.rectangle(image, (92, 97), (98, 103), LEFT_EYE_COLOR, -1)
    cv2.rectangle(image, (142, 97), (148, 103), RIGHT_EYE_COLOR, -1)
    cv2.circle(image, (120, 130), 6, (150, 100, 90), -1)
    cv2.ellipse(image, (120, 165), (25, 8), 0, 0, 180, (120, 40, 40), -1)

    M = cv2.getRotationMatrix2D(FACE_CENTER, angle, 1.0)
    if angle:
        image = cv2.warpAffine(image, M, (IMAGE_SIZE, IMAGE_SIZE),
                               flags=cv2.INTER_LINEAR, borderValue=BACKGROUND)

    left, top, right, bottom = FACE_BOX
    corners = [_transform(M, p) for p in ((left, top), (right, top), (left, bottom), (right, bottom))]
    xs = [c[0] for c in corners]
    ys = [c[1] for c in corners]
    bbox = BoundingBox(max(0.0, min(xs)), max(0.0, min(ys)),
                       min(float(IMAGE_SIZE), max(xs)), min(float(IMAGE_SIZE), max(ys)))

    landmarks = FaceLandmarks()
    if with_eyes:
        landmarks = FaceLandmarks(left_eye=_transform(M, LEFT_EYE), right_eye=_transform(M, RIGHT_EYE))

    return image, FaceDetection(bbox=bbox, landmarks=landmarks, confidence=0.99)


def color_centroid(image, color, tolerance: int = 60):
    """Centroid (x, y) of pixels close to a pure color, or None."""
    diff = np.abs(image.astype(np.int32) - np.array(color, dtype=np.int32)).max(axis=2)
    ys, xs = np.nonzero(diff < tolerance)
    if len(xs) == 0:
        return None
    return float(xs.mean()), float(ys.mean())


@pytest.fixture
def config():
    """Test configuration."""
    return {
        'alignment': {'target_size': 112},
        'embedding': {'embedding_size': 512, 'input_size': 112},
        'verification': {'similarity_threshold': 0.5},
        'record_store': {'backend': 'memory'},
    }


@pytest.fixture
def face():
    return make_face()


@pytest.fixture
def aligner(config):
    return FaceAligner(config)


@pytest.fixture
def embedder(config):
    return EmbeddingGenerator(config, model=ProjectionModel())


@pytest.fixture
def pipeline(face, aligner, embedder):
    """Pipeline whose detector always reports the synthetic face."""
    _, detection = face
    return EmbeddingPipeline(FacePreprocessor(FakeDetector([detection]), aligner), embedder)
