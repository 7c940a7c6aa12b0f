"""
Test cases for the preprocessing orchestrator and the embedding pipeline
"""

import numpy as np
import pytest

from face_auth.errors import AlignmentFailed, FailureReason, InferenceBackendUnavailable, NoFaceDetected
from face_auth.face_types import AlignmentPolicy, BoundingBox, FaceDetection
from face_auth.pipeline import EmbeddingPipeline
from face_auth.preprocessing import FacePreprocessor

from conftest import FakeDetector, make_face


class TestFacePreprocessor:
    """Test cases for FacePreprocessor class."""

    def test_select_largest_face(self):
        small = FaceDetection(bbox=BoundingBox(0, 0, 10, 10))
        large = FaceDetection(bbox=BoundingBox(0, 0, 50, 40))
        assert FacePreprocessor.select_largest([small, large, small]) is large

    def test_select_largest_tie_keeps_first(self):
        first = FaceDetection(bbox=BoundingBox(0, 0, 20, 20), confidence=0.5)
        second = FaceDetection(bbox=BoundingBox(30, 30, 50, 50), confidence=0.9)
        assert FacePreprocessor.select_largest([first, second]) is first

    def test_select_largest_empty(self):
        assert FacePreprocessor.select_largest([]) is None

    def test_no_face_detected(self, aligner):
        preprocessor = FacePreprocessor(FakeDetector([]), aligner)
        result = preprocessor.preprocess(make_face()[0])
        assert not result.ok
        assert result.failure is FailureReason.NO_FACE_DETECTED
        assert result.canonical_face is None

    def test_alignment_failed_keeps_detection(self, aligner):
        outside = FaceDetection(bbox=BoundingBox(500, 500, 600, 600))
        preprocessor = FacePreprocessor(FakeDetector([outside]), aligner)
        result = preprocessor.preprocess(make_face()[0])
        assert result.failure is FailureReason.ALIGNMENT_FAILED
        assert result.detection is outside
        with pytest.raises(AlignmentFailed):
            result.raise_for_failure()
        assert result.canonical_face is None

    def test_largest_of_several_faces_is_aligned(self, aligner):
        image, detection = make_face()
        decoy = FaceDetection(bbox=BoundingBox(0, 0, 20, 20))
        preprocessor = FacePreprocessor(FakeDetector([decoy, detection]), aligner)

        result = preprocessor.preprocess(image)
        assert result.ok
        assert result.detection is detection
        assert result.canonical_face.policy is AlignmentPolicy.EYES
        assert result.canonical_face.image.shape == (112, 112, 3)


class TestEmbeddingPipeline:
    """Test cases for EmbeddingPipeline class."""

    def test_generate_embedding(self, pipeline, face):
        embedding = pipeline.generate_embedding(face[0])
        assert embedding is not None
        assert embedding.shape == (512,)
        assert np.linalg.norm(embedding) == pytest.approx(1.0, abs=1e-5)

    def test_identical_images_give_identical_embeddings(self, pipeline):
        first = pipeline.generate_embedding(make_face()[0])
        second = pipeline.generate_embedding(make_face()[0])
        assert np.array_equal(first, second)

    def test_rotated_duplicate_embeds_close_to_upright(self, aligner, embedder):
        upright_image, upright_detection = make_face()
        rotated_image, rotated_detection = make_face(angle=50.0)

        upright = EmbeddingPipeline(
            FacePreprocessor(FakeDetector([upright_detection]), aligner), embedder
        ).generate_embedding(upright_image)
        rotated = EmbeddingPipeline(
            FacePreprocessor(FakeDetector([rotated_detection]), aligner), embedder
        ).generate_embedding(rotated_image)

        assert float(np.dot(upright, rotated)) > 0.95

    def test_no_face_returns_none(self, pipeline):
        blank = np.zeros((240, 240, 3), dtype=np.uint8)
        assert pipeline.generate_embedding(blank) is None

    def test_details_report_failing_stage(self, pipeline):
        blank = np.zeros((240, 240, 3), dtype=np.uint8)
        result = pipeline.generate_embedding_with_details(blank)
        assert not result.ok
        assert result.failure is FailureReason.NO_FACE_DETECTED
        assert result.embedding is None
        with pytest.raises(NoFaceDetected):
            result.raise_for_failure()

    def test_details_expose_intermediates(self, pipeline, face):
        image, detection = face
        result = pipeline.generate_embedding_with_details(image)
        assert result.ok
        assert result.detection is detection
        assert result.canonical_face.image.shape == (112, 112, 3)
        assert np.array_equal(result.embedding, pipeline.generate_embedding(image))

    def test_unloaded_backend_fails_loudly(self, pipeline, face):
        pipeline.embedder.close()
        with pytest.raises(InferenceBackendUnavailable):
            pipeline.generate_embedding(face[0])

    def test_close_releases_components(self, pipeline):
        detector = pipeline.preprocessor.detector
        with pipeline:
            pass
        assert detector.closed
        assert not pipeline.embedder.is_loaded

    def test_embedding_size(self, pipeline):
        assert pipeline.embedding_size == 512
