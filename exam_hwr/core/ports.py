from __future__ import annotations

from typing import Optional, Protocol, Sequence

import numpy.typing as npt

from exam_hwr.core.models import PredictionRecord
from exam_hwr.recognition.recognizer import LineRecognition


class PredictionStore(Protocol):
    """
    Persistence of prediction records.
    Failures surface as TransportError.
    """

    def lookup_prediction(self, question_id: int, student_id: int) -> Optional[PredictionRecord]: ...

    def create_prediction(self, record: PredictionRecord) -> int:
        """Create the record and return its assigned id."""
        ...

    def update_prediction(self, record: PredictionRecord) -> None:
        """Replace the text (and payload) of the record identified by record.id."""
        ...


class LineSegmenter(Protocol):
    """Splits an answer region (PNG bytes) into text-line PNGs, top to bottom. May return []."""

    def segment(self, image_png: bytes) -> list[bytes]: ...


class LineRecognizerPort(Protocol):
    def recognize_lines(self, images: Sequence[npt.NDArray]) -> list[LineRecognition]: ...
