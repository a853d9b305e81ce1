import logging

import onnxruntime as ort

logger = logging.getLogger(__name__)


def get_execution_providers(prefer_gpu: bool = True) -> list[tuple[str, dict] | str]:
    """
    Get available ONNX runtime execution providers with deterministic settings.

    Uses CUDA when it is available and wanted, CPU otherwise. TensorRT is never
    selected: the line model has dynamic widths, which TensorRT handles poorly.

    Args:
        prefer_gpu: set to False to force CPU execution

    Returns:
        List of execution provider names/configs to use
    """
    available = ort.get_available_providers()
    logger.info("Available ONNX providers: %s", available)

    if prefer_gpu and "CUDAExecutionProvider" in available:
        cuda_provider_options = {
            "cudnn_conv_algo_search": "DEFAULT",  # deterministic algorithm
            "do_copy_in_default_stream": True,
            "arena_extend_strategy": "kSameAsRequested",
        }
        logger.info("Using CUDA with deterministic settings: %s", cuda_provider_options)
        return [("CUDAExecutionProvider", cuda_provider_options), "CPUExecutionProvider"]

    if prefer_gpu:
        logger.warning("No GPU providers available, using CPU only")
    return ["CPUExecutionProvider"]
