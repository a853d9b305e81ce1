"""
Isolated execution unit for recognition tasks.

A task crosses the boundary as a frozen, picklable RecognitionTask and comes
back as exactly one RecognitionResult. In production the unit lives in a
worker process: init_unit() runs once per process (pool initializer) and
builds the line recognizer there, so the ONNX session is never shared with
the coordinator.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Literal, Optional

from exam_hwr.core.executor import ERROR_TEXT, RecognitionTaskExecutor
from exam_hwr.core.models import ErrorKind, RecognitionResult, RecognitionTask
from exam_hwr.errors import RetryableTaskError, TerminalTaskError
from exam_hwr.io.api import PredictionApiClient, SegmentationApiClient
from exam_hwr.recognition.config import RecognitionConfig
from exam_hwr.recognition.recognizer import LineRecognizer

logger = logging.getLogger(__name__)

UnitKind = Literal["process", "thread"]


@dataclass(frozen=True)
class UnitSettings:
    """Everything a unit needs to build its collaborators. Must stay picklable."""
    api_base_url: str
    recognition: RecognitionConfig
    http_timeout_seconds: float = 30.0
    zone_tag: str = "ZoneID123"


# Per-process state, set by init_unit (avoids pickling the recognizer per task)
_UNIT_SETTINGS: Optional[UnitSettings] = None
_UNIT_RECOGNIZER: Optional[LineRecognizer] = None
_UNIT_LOCK = threading.Lock()


def init_unit(settings: UnitSettings) -> None:
    """Initializer for pool workers. Idempotent."""
    global _UNIT_SETTINGS, _UNIT_RECOGNIZER
    with _UNIT_LOCK:
        if _UNIT_SETTINGS == settings and _UNIT_RECOGNIZER is not None:
            return
        _UNIT_SETTINGS = settings
        _UNIT_RECOGNIZER = LineRecognizer.from_config(settings.recognition)
    logger.info(f"[RecognitionUnit] Initialized in pid={os.getpid()} model={settings.recognition.model_file}")


def run_recognition_task(task: RecognitionTask) -> RecognitionResult:
    """
    Entry point executed inside the unit. Never raises: failures come back
    as an error-tagged result.
    """
    settings = _UNIT_SETTINGS
    recognizer = _UNIT_RECOGNIZER
    if settings is None or recognizer is None:
        return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.INTERNAL, "recognition unit not initialized")

    try:
        store = PredictionApiClient(settings.api_base_url, task.auth_token, settings.http_timeout_seconds)
        segmenter = SegmentationApiClient(settings.api_base_url, task.auth_token, settings.http_timeout_seconds)
    except (RetryableTaskError, TerminalTaskError) as e:
        logger.error(
            f"[RecognitionUnit] Cannot build backend clients: {e}",
            extra={"student_id": task.student_id, "question_id": task.question_id},
        )
        return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.from_exception(e), str(e))

    with store, segmenter:
        executor = RecognitionTaskExecutor(store, segmenter, recognizer, zone_tag=settings.zone_tag)
        try:
            return executor.run(task)
        except Exception as e:
            logger.error(f"[RecognitionUnit] Task crashed: {e}", exc_info=True)
            return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.INTERNAL, str(e))


def create_unit_pool(settings: UnitSettings, kind: UnitKind = "process", max_workers: int = 1) -> Executor:
    """
    Pool of isolated units to hand to the scheduler along with run_recognition_task.

    "thread" keeps units in this process (one shared, lazily created ONNX
    session); "process" gives each worker its own.
    """
    if kind == "process":
        return ProcessPoolExecutor(max_workers=max_workers, initializer=init_unit, initargs=(settings,))
    if kind == "thread":
        init_unit(settings)
        return ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="hwr-unit")
    raise ValueError(f"unknown unit kind: {kind}")
