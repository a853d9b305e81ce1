"""
Configuration for the line recognizer.

Usage Examples:

    # 1. Deployed model with default preprocessing
    config = RecognitionConfig.default("models/mlt_v3.onnx")

    # 2. From a model directory shipping a model_config.json
    config = RecognitionConfig.from_model_config("models/mlt_v3/model_config.json")

    # 3. Custom padding
    config = RecognitionConfig(
        model_file="models/mlt_v3.onnx",
        preprocess=PreprocessConfig(pad_left=32, pad_right=32),
    )
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from exam_hwr.errors import ModelNotFoundError

from .alphabet import MLT_V3_NUM_CLASSES
from .preprocessing import PreprocessConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionConfig:
    model_file: str
    """Path to the ONNX artifact. Versioned by its file name."""

    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)

    input_layer: str = "inputs"
    width_layer: str = "image_widths"
    output_layer: str = "output"

    num_classes: int = MLT_V3_NUM_CLASSES
    """Size of the class axis of the model output."""

    apply_log_softmax: bool = True
    prefer_gpu: bool = True

    def __post_init__(self):
        if not self.model_file:
            raise ValueError("model_file is required")
        if self.num_classes < 2:
            raise ValueError(f"num_classes must be >= 2, got {self.num_classes}")

    @classmethod
    def default(cls, model_file: str, prefer_gpu: bool = True) -> "RecognitionConfig":
        return cls(model_file=model_file, prefer_gpu=prefer_gpu)

    @classmethod
    def from_model_config(cls, config_path: str | Path, prefer_gpu: bool = True) -> "RecognitionConfig":
        """
        Load a model_config.json sitting next to the ONNX artifact.

        Only "onnx-model" is required; preprocessing keys fall back to the
        deployed defaults.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise ModelNotFoundError(f"model_config.json not found: {config_path}")

        logger.info(f"Loading recognition model config from: {config_path}")
        with config_path.open(encoding="utf-8") as f:
            raw = json.load(f)

        defaults = PreprocessConfig()
        preprocess = PreprocessConfig(
            target_channels=int(raw.get("channels", defaults.target_channels)),
            pad_value=float(raw.get("pad_value", defaults.pad_value)),
            pad_left=int(raw.get("pad_left", defaults.pad_left)),
            pad_right=int(raw.get("pad_right", defaults.pad_right)),
            mean=float(raw.get("mean", defaults.mean)),
            std=float(raw.get("std", defaults.std)),
            target_height=int(raw.get("input_height", defaults.target_height)),
        )

        return cls(
            model_file=str(config_path.parent / raw["onnx-model"]),
            preprocess=preprocess,
            input_layer=raw.get("input_layer", "inputs"),
            width_layer=raw.get("width_layer", "image_widths"),
            output_layer=raw.get("output_layer", "output"),
            num_classes=int(raw.get("num_classes", MLT_V3_NUM_CLASSES)),
            prefer_gpu=prefer_gpu,
        )
