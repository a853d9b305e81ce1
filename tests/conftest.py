"""
Pytest configuration and fixtures for exam_hwr tests.

Collaborators (backend, segmentation service, ONNX session) are replaced by
in-memory fakes; no network access or model artifact is needed.
"""

import threading
from dataclasses import replace

import numpy as np
import pytest

from exam_hwr.core.models import ImageRegion, PredictionRecord, RecognitionTask
from exam_hwr.errors import TransportError
from exam_hwr.recognition.alphabet import MLT_V3, MLT_V3_NUM_CLASSES
from exam_hwr.recognition.recognizer import LineRecognition


def one_hot_path(path, num_classes=MLT_V3_NUM_CLASSES, high=0.9):
    """(len(path), num_classes) probability matrix whose argmax follows path."""
    low = (1.0 - high) / (num_classes - 1)
    probs = np.full((len(path), num_classes), low, dtype=np.float32)
    for t, idx in enumerate(path):
        probs[t, idx] = high
    return probs


def path_for(text):
    """Frame path that decodes to text: each symbol followed by a blank."""
    path = []
    for ch in text:
        path.extend([MLT_V3.symbols.index(ch), 0])
    return path


class FakeStore:
    """In-memory PredictionStore keyed by (question_id, student_id)."""

    def __init__(self, existing=None):
        self.records = {}
        self.calls = []
        self.fail_on = set()
        self._next_id = 100
        for record in existing or []:
            self.records[(record.question_id, record.student_id)] = record

    def lookup_prediction(self, question_id, student_id):
        self.calls.append(("lookup", question_id, student_id))
        if "lookup" in self.fail_on:
            raise TransportError("lookup unavailable")
        return self.records.get((question_id, student_id))

    def create_prediction(self, record):
        self.calls.append(("create", record))
        if "create" in self.fail_on:
            raise TransportError("create unavailable")
        self._next_id += 1
        self.records[(record.question_id, record.student_id)] = replace(record, id=self._next_id)
        return self._next_id

    def update_prediction(self, record):
        self.calls.append(("update", record))
        if "update" in self.fail_on:
            raise TransportError("update unavailable")
        self.records[(record.question_id, record.student_id)] = record

    def count(self, op):
        return sum(1 for call in self.calls if call[0] == op)


class FakeSegmenter:
    def __init__(self, lines=None, error=None):
        self.lines = lines if lines is not None else []
        self.error = error
        self.calls = []

    def segment(self, image_png):
        self.calls.append(image_png)
        if self.error is not None:
            raise self.error
        return list(self.lines)


class FakeRecognizer:
    def __init__(self, texts=None, error=None):
        self.texts = texts or []
        self.error = error
        self.calls = []

    def recognize_lines(self, images):
        self.calls.append(len(images))
        if self.error is not None:
            raise self.error
        return [LineRecognition(text=t, confidence=-0.1, frames=10) for t in self.texts[: len(images)]]


class FakeSession:
    """Stands in for onnxruntime.InferenceSession."""

    def __init__(self, output=None, num_classes=MLT_V3_NUM_CLASSES, frames=8, error=None):
        self.output = output
        self.num_classes = num_classes
        self.frames = frames
        self.error = error
        self.feeds = []
        self.lock = threading.Lock()

    def run(self, output_names, feeds):
        with self.lock:
            self.feeds.append((output_names, feeds))
        if self.error is not None:
            raise self.error
        if self.output is not None:
            return [self.output]
        return [np.zeros((1, self.frames, self.num_classes), dtype=np.float32)]


@pytest.fixture
def make_region():
    def _make(student_index=3, question_id=7, width=40, height=20, page_number=1):
        pixels = np.full((height, width, 3), 255, dtype=np.uint8)
        pixels[5:15, 5:35] = 0
        return ImageRegion(
            page_number=page_number,
            pixel_buffer=pixels,
            width=width,
            height=height,
            question_id=question_id,
            student_index=student_index,
        )

    return _make


@pytest.fixture
def make_task(make_region):
    def _make(student_index=3, question_id=7, exam_id="42", auth_token="secret"):
        region = make_region(student_index=student_index, question_id=question_id)
        return RecognitionTask.for_region(region, exam_id, auth_token)

    return _make


@pytest.fixture
def line_png():
    from exam_hwr.io.images import encode_png

    return encode_png(np.full((16, 64, 3), 200, dtype=np.uint8))


@pytest.fixture
def existing_record():
    def _make(text, student_id=3, question_id=7, record_id=9):
        return PredictionRecord(
            exam_id="42", question_id=question_id, student_id=student_id, text=text, id=record_id
        )

    return _make


@pytest.fixture
def probs_for():
    """Build a probability matrix that greedy-decodes to the given text."""

    def _make(text):
        return one_hot_path(path_for(text))

    return _make


@pytest.fixture
def store_cls():
    return FakeStore


@pytest.fixture
def segmenter_cls():
    return FakeSegmenter


@pytest.fixture
def recognizer_cls():
    return FakeRecognizer


@pytest.fixture
def session_cls():
    return FakeSession
