"""
Offline recognition commands. Nothing is read from or written to the backend.

Usage:
  exam-hwr recognize line1.png line2.png
  exam-hwr decode probs.npy
"""

import logging
from pathlib import Path

import click
from rich.console import Console

console = Console()
logger = logging.getLogger("exam_hwr.cli.recognize")


@click.command()
@click.argument('images', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--model-path', type=str, help='ONNX model (default: HWR_MODEL_PATH)')
@click.option('--model-config', type=click.Path(exists=True, dir_okay=False), help='model_config.json next to the ONNX model')
@click.option('--separator', type=str, default=', ', show_default=True, help='Joins the texts of the images')
@click.option('--cpu', is_flag=True, help='Do not try the CUDA execution provider')
def recognize(images, model_path, model_config, separator, cpu):
    """Recognize standalone line IMAGES and print the joined text."""
    from exam_hwr.config import PipelineConfig
    from exam_hwr.io.images import load_image
    from exam_hwr.recognition.config import RecognitionConfig
    from exam_hwr.recognition.recognizer import LineRecognizer

    cfg = PipelineConfig.from_env(model_path=model_path, prefer_gpu=False if cpu else None)
    if model_config:
        recognition = RecognitionConfig.from_model_config(model_config, prefer_gpu=cfg.prefer_gpu)
    else:
        recognition = RecognitionConfig.default(cfg.model_path, prefer_gpu=cfg.prefer_gpu)

    recognizer = LineRecognizer.from_config(recognition)
    pixels = [load_image(path) for path in images]
    console.print(recognizer.recognize_batch(pixels, separator=separator), markup=False, highlight=False)


@click.command()
@click.argument('probs_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--max-len', type=int, default=-1, help='Only decode the first N frames (-1: all)')
@click.option('--keep-duplicates', is_flag=True, help='Do not merge repeated symbols')
def decode(probs_file, max_len, keep_duplicates):
    """Greedy-decode a (frames, classes) or (batch, frames, classes) matrix saved with numpy.save."""
    import numpy as np

    from exam_hwr.recognition.alphabet import MLT_V3
    from exam_hwr.recognition.ctc_decoder import decode_batch, decode_best_path

    probs = np.load(probs_file)
    options = {"max_len": max_len, "remove_duplicates": not keep_duplicates}
    if probs.ndim == 3:
        text = decode_batch(probs, MLT_V3, **options)
    else:
        text = decode_best_path(probs, MLT_V3, **options)
    console.print(text, markup=False, highlight=False)
