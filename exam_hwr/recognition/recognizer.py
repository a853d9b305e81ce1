"""Per-line recognition: preprocess, run the model, decode."""

import logging
import time
from dataclasses import dataclass
from typing import Sequence

import numpy.typing as npt

from .alphabet import MLT_V3, Alphabet
from .config import RecognitionConfig
from .ctc_decoder import RESULT_SEPARATOR, decode_best_path_with_confidence
from .model import InferenceModel
from .preprocessing import PreprocessConfig, preprocess_line

logger = logging.getLogger(__name__)
timings_logger = logging.getLogger("exam_hwr_timings")


@dataclass(frozen=True)
class LineRecognition:
    text: str
    confidence: float  # mean log probability of the emitted characters, -inf if none
    frames: int


class LineRecognizer:
    def __init__(
        self,
        model: InferenceModel,
        alphabet: Alphabet = MLT_V3,
        preprocess_config: PreprocessConfig | None = None,
    ) -> None:
        if model.num_classes != alphabet.num_classes:
            raise ValueError(
                f"model emits {model.num_classes} classes but alphabet {alphabet.version} has {alphabet.num_classes}"
            )
        self.model = model
        self.alphabet = alphabet
        self.preprocess_config = preprocess_config or PreprocessConfig()

    @classmethod
    def from_config(cls, config: RecognitionConfig, alphabet: Alphabet = MLT_V3) -> "LineRecognizer":
        model = InferenceModel(
            model_file=config.model_file,
            input_layer=config.input_layer,
            width_layer=config.width_layer,
            output_layer=config.output_layer,
            num_classes=config.num_classes,
            apply_log_softmax=config.apply_log_softmax,
            prefer_gpu=config.prefer_gpu,
        )
        return cls(model, alphabet, config.preprocess)

    def recognize_line(self, image: npt.NDArray) -> LineRecognition:
        """Recognize the text of a single line image."""
        start = time.perf_counter()
        line = preprocess_line(image, self.preprocess_config)
        preprocess_ms = (time.perf_counter() - start) * 1000

        start = time.perf_counter()
        probs = self.model.predict(line.tensor)
        inference_ms = (time.perf_counter() - start) * 1000

        start = time.perf_counter()
        text, confidence = decode_best_path_with_confidence(probs[0], self.alphabet)
        decode_ms = (time.perf_counter() - start) * 1000

        timings_logger.info(
            f"[LineRecognizer] width={line.width} frames={probs.shape[1]} preprocess={preprocess_ms:.1f}ms "
            f"inference={inference_ms:.1f}ms decode={decode_ms:.1f}ms"
        )
        return LineRecognition(text=text, confidence=confidence, frames=int(probs.shape[1]))

    def recognize_lines(self, images: Sequence[npt.NDArray]) -> list[LineRecognition]:
        """Recognize several lines, results in input order."""
        return [self.recognize_line(image) for image in images]

    def recognize_batch(self, images: Sequence[npt.NDArray], separator: str = RESULT_SEPARATOR) -> str:
        """Recognize independent images and join their texts with separator."""
        return separator.join(r.text for r in self.recognize_lines(images))
