"""
Face Localization Module

Wraps the face detection backends (MTCNN, Haar Cascades, DeepFace,
face_recognition) behind a single interface returning `FaceDetection`
objects with optional five-point landmarks.
"""

import cv2
import numpy as np
import logging
from typing import List, Optional, Dict, Any, Sequence
from PIL import Image
import torch
from facenet_pytorch import MTCNN

from .face_types import BoundingBox, FaceDetection, FaceLandmarks

logger = logging.getLogger(__name__)

SUPPORTED_METHODS = ('mtcnn', 'haar', 'deepface', 'face_recognition')


def _point(value) -> Optional[tuple]:
    if value is None:
        return None
    return float(value[0]), float(value[1])


def _centroid(points: Sequence) -> Optional[tuple]:
    if not points:
        return None
    arr = np.asarray(points, dtype=np.float32)
    return float(arr[:, 0].mean()), float(arr[:, 1].mean())


def largest_detection(detections: Sequence[FaceDetection]) -> Optional[FaceDetection]:
    """Detection with the largest box area; the first one found wins ties."""
    if not detections:
        return None
    return max(detections, key=lambda detection: detection.area)


def _order_eyes(first, second):
    """Return (image-left eye, image-right eye)."""
    if first is None or second is None:
        return first, second
    return (first, second) if first[0] <= second[0] else (second, first)


class FaceDetector:
    """Face localization with pluggable backends."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize face detector.

        Args:
            config: Configuration dictionary with face detection settings
        """
        self.config = config.get('face_detection', {})
        self.method = self.config.get('method', 'mtcnn')
        self.min_confidence = self.config.get('min_confidence', 0.9)
        self.min_face_size = self.config.get('min_face_size', 40)
        self.device = torch.device('cuda' if torch.cuda.is_available() and
                                   config.get('performance', {}).get('use_gpu', False)
                                   else 'cpu')

        if self.method not in SUPPORTED_METHODS:
            logger.warning(f"Unsupported detection method: {self.method}, falling back to mtcnn")
            self.method = 'mtcnn'

        self.detector = None
        if self.method == 'mtcnn':
            self.detector = MTCNN(
                keep_all=True, min_face_size=self.min_face_size,
                thresholds=[0.6, 0.7, 0.7], factor=0.709, device=self.device
            )
        elif self.method == 'haar':
            self.detector = cv2.CascadeClassifier(
                cv2.data.haarcascades + 'haarcascade_frontalface_default.xml'
            )
        elif self.method == 'deepface':
            self.detector_backend = self.config.get('detector_backend', 'retinaface')

        logger.info(f"Face detector initialized with method: {self.method}")

    def detect_faces(self, image: np.ndarray) -> List[FaceDetection]:
        """
        Detect faces in an image.

        Args:
            image: Input image as numpy array (RGB format)

        Returns:
            List of detections, in backend order
        """
        if image is None or image.size == 0:
            return []

        try:
            if self.method == 'mtcnn':
                faces = self._detect_mtcnn(image)
            elif self.method == 'haar':
                faces = self._detect_haar(image)
            elif self.method == 'deepface':
                faces = self._detect_deepface(image)
            else:
                faces = self._detect_face_recognition(image)
        except Exception as e:
            logger.error(f"Face detection failed: {e}")
            return []

        logger.debug(f"Detected {len(faces)} face(s) with {self.method}")
        return faces

    def detect_largest_face(self, image: np.ndarray) -> Optional[FaceDetection]:
        """Return the detection with the largest box (first one on ties)."""
        return largest_detection(self.detect_faces(image))

    def _detect_mtcnn(self, image: np.ndarray) -> List[FaceDetection]:
        """Detect faces and five landmarks using MTCNN."""
        boxes, probs, points = self.detector.detect(Image.fromarray(image), landmarks=True)
        if boxes is None:
            return []

        faces = []
        for box, prob, pts in zip(boxes, probs, points):
            if prob is None or prob < self.min_confidence:
                continue
            left_eye, right_eye = _order_eyes(_point(pts[0]), _point(pts[1]))
            faces.append(FaceDetection(
                bbox=BoundingBox(*(float(v) for v in box)),
                landmarks=FaceLandmarks(
                    left_eye=left_eye,
                    right_eye=right_eye,
                    nose=_point(pts[2]),
                    left_mouth=_point(pts[3]),
                    right_mouth=_point(pts[4]),
                ),
                confidence=float(prob),
            ))
        return faces

    def _detect_haar(self, image: np.ndarray) -> List[FaceDetection]:
        """Detect faces using Haar Cascades (no landmarks)."""
        gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)

        faces_rect = self.detector.detectMultiScale(
            gray,
            scaleFactor=1.1,
            minNeighbors=5,
            minSize=(self.min_face_size, self.min_face_size)
        )

        return [
            FaceDetection(bbox=BoundingBox.from_xywh(x, y, w, h), confidence=None)
            for (x, y, w, h) in faces_rect
        ]

    def _detect_deepface(self, image: np.ndarray) -> List[FaceDetection]:
        """Detect faces and eye positions using DeepFace."""
        from deepface import DeepFace

        # DeepFace treats numpy input as BGR
        bgr_image = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
        face_objs = DeepFace.extract_faces(
            img_path=bgr_image,
            detector_backend=self.detector_backend,
            enforce_detection=False,
            align=False,
        )

        faces = []
        for face_obj in face_objs:
            confidence = float(face_obj.get('confidence') or 0.0)
            # enforce_detection=False yields the whole frame with zero confidence
            if confidence <= 0.0:
                continue
            area = face_obj['facial_area']
            left_eye, right_eye = _order_eyes(
                _point(area.get('left_eye')), _point(area.get('right_eye'))
            )
            faces.append(FaceDetection(
                bbox=BoundingBox.from_xywh(area['x'], area['y'], area['w'], area['h']),
                landmarks=FaceLandmarks(left_eye=left_eye, right_eye=right_eye),
                confidence=confidence,
            ))
        return faces

    def _detect_face_recognition(self, image: np.ndarray) -> List[FaceDetection]:
        """Detect faces using the face_recognition library (dlib)."""
        import face_recognition

        locations = face_recognition.face_locations(image, model='hog')
        if not locations:
            return []
        landmarks_list = face_recognition.face_landmarks(image, face_locations=locations)

        faces = []
        for (top, right, bottom, left), marks in zip(locations, landmarks_list):
            top_lip = marks.get('top_lip') or []
            left_eye, right_eye = _order_eyes(
                _centroid(marks.get('left_eye')), _centroid(marks.get('right_eye'))
            )
            faces.append(FaceDetection(
                bbox=BoundingBox(float(left), float(top), float(right), float(bottom)),
                landmarks=FaceLandmarks(
                    left_eye=left_eye,
                    right_eye=right_eye,
                    nose=_centroid(marks.get('nose_tip')),
                    left_mouth=_point(top_lip[0]) if len(top_lip) > 6 else None,
                    right_mouth=_point(top_lip[6]) if len(top_lip) > 6 else None,
                ),
            ))
        return faces

    def close(self):
        """Release the detection backend."""
        self.detector = None
        logger.info("Face detector closed")
