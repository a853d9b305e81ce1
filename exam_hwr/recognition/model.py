"""Handwriting line model wrapper for ONNX inference."""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

import numpy as np
import numpy.typing as npt
import onnxruntime as ort
from scipy.special import log_softmax as scipy_log_softmax

from exam_hwr.errors import InferenceError, InferenceShapeError, ModelNotFoundError

from .alphabet import MLT_V3_NUM_CLASSES
from .utils import get_execution_providers

logger = logging.getLogger(__name__)

NHWC_NDIM = 4
OUTPUT_NDIM = 3

SessionFactory = Callable[[str, list], Any]


def _default_session_factory(model_file: str, providers: list) -> Any:
    return ort.InferenceSession(model_file, providers=providers)


class InferenceModel:
    """
    One forward pass of the line model per call.

    The ONNX session is created lazily on first use, at most once, and then
    shared read-only by every caller in the process.
    """

    def __init__(
        self,
        model_file: str,
        input_layer: str = "inputs",
        width_layer: str = "image_widths",
        output_layer: str = "output",
        num_classes: int = MLT_V3_NUM_CLASSES,
        apply_log_softmax: bool = True,
        prefer_gpu: bool = True,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.model_file = str(model_file)
        self._input_layer = input_layer
        self._width_layer = width_layer
        self._output_layer = output_layer
        self.num_classes = num_classes
        self._apply_log_softmax = apply_log_softmax
        self._prefer_gpu = prefer_gpu
        self._session_factory = session_factory or _default_session_factory

        self._session: Any = None
        self._session_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> Any:
        """The ONNX session, created on first access."""
        if self._session is None:
            with self._session_lock:
                if self._session is None:
                    self._session = self._load_session()
        return self._session

    def _load_session(self) -> Any:
        if self._session_factory is _default_session_factory and not Path(self.model_file).is_file():
            raise ModelNotFoundError(f"ONNX model file not found: {self.model_file}")

        providers = get_execution_providers(self._prefer_gpu)
        logger.info(f"[InferenceModel] Loading {self.model_file}")
        try:
            return self._session_factory(self.model_file, providers)
        except FileNotFoundError as e:
            raise ModelNotFoundError(f"ONNX model file not found: {self.model_file}") from e
        except Exception as e:
            raise InferenceError(f"Failed to load ONNX model {self.model_file}: {e}") from e

    def predict(self, tensor: npt.NDArray) -> npt.NDArray:
        """
        Run the model on a preprocessed NHWC tensor.

        The model expects NCHW input plus the image width as a separate int32
        input, so the tensor is transposed before the call.

        Args:
            tensor: (batch, height, width, channels) float tensor

        Returns:
            (batch, frames, classes) float32 scores (log probabilities when
            apply_log_softmax is set)

        Raises:
            InferenceShapeError: input is not 4-D, or output does not match (batch, frames, classes)
            InferenceError: the model could not be loaded or run
        """
        tensor = np.asarray(tensor, dtype=np.float32)
        if tensor.ndim != NHWC_NDIM:
            raise InferenceShapeError(f"input tensor must have 4 dimensions, got {tensor.ndim}")

        nchw = np.ascontiguousarray(np.transpose(tensor, axes=[0, 3, 1, 2]))
        image_width = np.array([nchw.shape[3]], dtype=np.int32)

        session = self.session
        try:
            results = session.run(
                [self._output_layer],
                {self._input_layer: nchw, self._width_layer: image_width},
            )
        except Exception as e:
            raise InferenceError(f"Inference failed: {e}") from e

        probs = np.asarray(results[0], dtype=np.float32)
        if probs.ndim != OUTPUT_NDIM:
            raise InferenceShapeError(f"model output must be 3-D (batch, frames, classes), got shape {probs.shape}")
        if probs.shape[2] != self.num_classes:
            raise InferenceShapeError(
                f"model output has {probs.shape[2]} classes, alphabet expects {self.num_classes}"
            )

        if self._apply_log_softmax and probs.shape[1] > 0:
            probs = scipy_log_softmax(probs, axis=2).astype(np.float32)

        return probs
