"""
Test cases for Face Alignment Module
"""

import numpy as np
import pytest

from face_auth.alignment import BoxAlignment, EyeAlignment, FaceAligner
from face_auth.errors import AlignmentFailed
from face_auth.face_types import AlignmentPolicy, BoundingBox, FaceDetection, FaceLandmarks

from conftest import LEFT_EYE_COLOR, RIGHT_EYE_COLOR, color_centroid, make_face


class TestEyeAlignment:
    """Eye-landmark similarity transform."""

    @pytest.mark.parametrize('target_size', [64, 112, 160])
    def test_output_is_target_size(self, aligner, face, target_size):
        image, detection = face
        canonical = aligner.align(image, detection, target_size=target_size)
        assert canonical.image.shape == (target_size, target_size, 3)
        assert canonical.policy is AlignmentPolicy.EYES

    def test_eyes_land_at_canonical_positions(self, aligner, face):
        image, detection = face
        canonical = aligner.align(image, detection)

        left = color_centroid(canonical.image, LEFT_EYE_COLOR)
        right = color_centroid(canonical.image, RIGHT_EYE_COLOR)
        assert left is not None and right is not None

        # Eye midpoint at (56, 37.3), eyes 0.4 * 112 apart
        assert left[0] == pytest.approx(112 / 2 - 0.2 * 112, abs=1.5)
        assert right[0] == pytest.approx(112 / 2 + 0.2 * 112, abs=1.5)
        assert left[1] == pytest.approx(112 / 3, abs=1.5)
        assert right[1] == pytest.approx(112 / 3, abs=1.5)

    @pytest.mark.parametrize('angle', [-40.0, 25.0, 60.0])
    def test_rotated_face_is_levelled(self, aligner, angle):
        image, detection = make_face(angle=angle)
        canonical = aligner.align(image, detection)

        left = color_centroid(canonical.image, LEFT_EYE_COLOR)
        right = color_centroid(canonical.image, RIGHT_EYE_COLOR)
        assert left is not None and right is not None
        assert abs(left[1] - right[1]) < 2.0
        assert right[0] - left[0] == pytest.approx(0.4 * 112, abs=2.0)

    def test_rotated_duplicate_matches_upright_crop(self, aligner):
        upright = aligner.align(*make_face()).image.astype(np.float32)
        rotated = aligner.align(*make_face(angle=45.0)).image.astype(np.float32)
        assert np.mean(np.abs(upright - rotated)) < 12.0

    def test_coincident_eyes_fail(self, aligner, face):
        image, detection = face
        degenerate = FaceDetection(
            bbox=detection.bbox,
            landmarks=FaceLandmarks(left_eye=(100.0, 100.0), right_eye=(100.0, 100.0)),
        )
        with pytest.raises(AlignmentFailed):
            aligner.align(image, degenerate)

    def test_transform_requires_eyes(self, face):
        _, detection = face
        without_eyes = FaceDetection(bbox=detection.bbox)
        with pytest.raises(AlignmentFailed):
            EyeAlignment().transform_matrix(without_eyes, 112)


class TestBoxAlignment:
    """Bounding-box fallback."""

    def test_fallback_used_without_eyes(self, aligner):
        image, detection = make_face(with_eyes=False)
        canonical = aligner.align(image, detection)
        assert canonical.policy is AlignmentPolicy.PADDED_BOX
        assert canonical.image.shape == (112, 112, 3)

    def test_padded_and_simple_crop_regions(self):
        image = np.zeros((400, 400, 3), dtype=np.uint8)
        detection = FaceDetection(bbox=BoundingBox(100, 100, 200, 200))

        padded = BoxAlignment(0.3, AlignmentPolicy.PADDED_BOX).crop_region(image, detection)
        simple = BoxAlignment(0.2, AlignmentPolicy.SIMPLE_BOX).crop_region(image, detection)

        assert padded == (70, 70, 230, 230)
        assert simple == (80, 80, 220, 220)

    def test_simple_policy_from_config(self):
        aligner = FaceAligner({'alignment': {'fallback_policy': 'simple'}})
        image, detection = make_face(with_eyes=False)
        assert aligner.align(image, detection).policy is AlignmentPolicy.SIMPLE_BOX

    def test_named_policy_overrides_landmarks(self, aligner, face):
        image, detection = face
        canonical = aligner.align_with_policy(image, detection, AlignmentPolicy.SIMPLE_BOX)
        assert canonical.policy is AlignmentPolicy.SIMPLE_BOX
        assert canonical.image.shape == (112, 112, 3)

    def test_box_touching_edges_is_clamped(self):
        image = np.zeros((100, 120, 3), dtype=np.uint8)
        detection = FaceDetection(bbox=BoundingBox(-10, 60, 50, 130))
        region = BoxAlignment(0.3, AlignmentPolicy.PADDED_BOX).crop_region(image, detection)
        assert region == (0, 39, 68, 100)

    def test_box_outside_image_fails(self, aligner):
        image = np.full((200, 200, 3), 128, dtype=np.uint8)
        detection = FaceDetection(bbox=BoundingBox(300, 300, 400, 400))
        with pytest.raises(AlignmentFailed):
            aligner.align(image, detection)

    def test_empty_image_fails(self, aligner, face):
        _, detection = face
        with pytest.raises(AlignmentFailed):
            aligner.align(np.zeros((0, 0, 3), dtype=np.uint8), detection)


class TestFaceAlignerConfig:

    def test_eye_policy_is_not_a_fallback(self):
        with pytest.raises(ValueError):
            FaceAligner({'alignment': {'fallback_policy': 'eyes'}})

    def test_unknown_fallback_policy(self):
        with pytest.raises(ValueError):
            FaceAligner({'alignment': {'fallback_policy': 'stretch'}})
