"""
Recognition of one answer region, end to end.

Flow per task:
1. Look up an existing prediction for (question, student); reuse its text if any,
   report a still pending one as in progress
2. Create a placeholder record ("En attente") carrying a PNG snapshot
3. Ask the segmentation service to split the region into lines
4. Preprocess, infer and decode every line, in line order
5. Finalize the record exactly once: text, "no prediction" or error sentinel
"""

from __future__ import annotations

import enum
import json
import logging
import math
import time
from dataclasses import replace
from typing import Optional

from exam_hwr.core.models import ErrorKind, PredictionRecord, RecognitionResult, RecognitionTask
from exam_hwr.core.ports import LineRecognizerPort, LineSegmenter, PredictionStore
from exam_hwr.errors import (
    EmptyResultError,
    InputValidationError,
    MissingCredentialError,
    RetryableTaskError,
    TerminalTaskError,
)
from exam_hwr.io.images import decode_png, encode_png, to_data_url
from exam_hwr.recognition.alphabet import MLT_V3_VERSION
from exam_hwr.recognition.ctc_decoder import LINE_SEPARATOR

logger = logging.getLogger(__name__)

PENDING_TEXT = "En attente"
NO_PREDICTION_TEXT = "No prediction available"
ERROR_TEXT = "Erreur de prédiction"


class TaskState(str, enum.Enum):
    PENDING = "pending"
    RESOLVING_EXISTING = "resolving_existing"
    SHORT_CIRCUIT_DONE = "short_circuit_done"
    CREATING_PLACEHOLDER = "creating_placeholder"
    SEGMENTING = "segmenting"
    PER_LINE_INFERRING = "per_line_inferring"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class RecognitionTaskExecutor:
    """
    Runs one RecognitionTask against the persistence, segmentation and
    recognition collaborators. Never raises for task-level failures: every
    run ends with exactly one RecognitionResult.
    """

    def __init__(
        self,
        store: PredictionStore,
        segmenter: LineSegmenter,
        recognizer: LineRecognizerPort,
        zone_tag: str = "ZoneID123",
        model_version: str = MLT_V3_VERSION,
    ):
        self.store = store
        self.segmenter = segmenter
        self.recognizer = recognizer
        self.zone_tag = zone_tag
        self.model_version = model_version
        self.states: list[TaskState] = []

    def _enter(self, state: TaskState) -> None:
        self.states.append(state)
        logger.debug(f"[TaskExecutor] -> {state.value}")

    def run(self, task: RecognitionTask) -> RecognitionResult:
        result = self._run(task)
        task.region.attach_result(result.text)
        return result

    def _run(self, task: RecognitionTask) -> RecognitionResult:
        self.states = []
        self._enter(TaskState.PENDING)
        log_extra = {"student_id": task.student_id, "question_id": task.question_id, "exam_id": task.exam_id}
        start = time.perf_counter()

        if not task.auth_token:
            self._enter(TaskState.FAILED)
            err = MissingCredentialError("no auth token available for this task")
            logger.error(f"[TaskExecutor] {err}", extra=log_extra)
            return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.MISSING_CREDENTIAL, str(err))

        # --- idempotence: reuse what is already stored ---
        self._enter(TaskState.RESOLVING_EXISTING)
        try:
            existing = self.store.lookup_prediction(task.question_id, task.student_id)
        except (RetryableTaskError, TerminalTaskError) as e:
            self._enter(TaskState.FAILED)
            logger.warning(f"[TaskExecutor] Lookup failed: {e}", extra=log_extra)
            return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.from_exception(e), str(e))

        if existing is not None and existing.text == PENDING_TEXT:
            # in flight elsewhere, or left behind by a run whose final write failed
            self._enter(TaskState.FAILED)
            message = f"prediction {existing.id} is still pending"
            logger.warning(f"[TaskExecutor] {message}, not recomputing", extra=log_extra)
            return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.IN_PROGRESS, message)

        if existing is not None and existing.text:
            self._enter(TaskState.SHORT_CIRCUIT_DONE)
            logger.info("[TaskExecutor] Prediction exists, skipping recognition", extra=log_extra)
            return RecognitionResult.ok(task, existing.text, from_existing=True)

        # --- placeholder ---
        self._enter(TaskState.CREATING_PLACEHOLDER)
        invalid: Optional[InputValidationError] = None
        image_png: Optional[bytes] = None
        try:
            task.region.validate()
            image_png = encode_png(task.region.pixel_buffer)
        except InputValidationError as e:
            invalid = e
        task.region.release()

        placeholder = PredictionRecord(
            exam_id=task.exam_id,
            question_id=task.question_id,
            student_id=task.student_id,
            text=PENDING_TEXT,
            auxiliary_payload=json.dumps({"status": "pending", "model": self.model_version}),
            zone_tag=self.zone_tag,
            image_snapshot=to_data_url(image_png) if image_png is not None else None,
        )

        if existing is not None and existing.id is not None:
            # a record without text exists: finalize it instead of adding a duplicate
            record = replace(placeholder, id=existing.id, image_snapshot=None)
        else:
            try:
                record = replace(placeholder, id=self.store.create_prediction(placeholder), image_snapshot=None)
            except (RetryableTaskError, TerminalTaskError) as e:
                self._enter(TaskState.FAILED)
                logger.warning(f"[TaskExecutor] Placeholder creation failed: {e}", extra=log_extra)
                return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.from_exception(e), str(e))
        del placeholder

        if invalid is not None:
            logger.error(f"[TaskExecutor] Invalid region: {invalid}", extra=log_extra)
            return self._finalize_error(task, record, invalid, log_extra)

        # --- segmentation + recognition ---
        try:
            self._enter(TaskState.SEGMENTING)
            line_pngs = self.segmenter.segment(image_png)
            del image_png
            if not line_pngs:
                raise EmptyResultError("segmentation returned no lines")

            self._enter(TaskState.PER_LINE_INFERRING)
            line_images = [decode_png(data) for data in line_pngs]
            recognitions = self.recognizer.recognize_lines(line_images)
            del line_images

            texts = [r.text for r in recognitions if r.text]
            text = LINE_SEPARATOR.join(texts).strip()
            if not text:
                raise EmptyResultError(f"no decodable text in {len(recognitions)} lines")
        except EmptyResultError as e:
            logger.info(f"[TaskExecutor] {e}", extra=log_extra)
            self._enter(TaskState.PERSISTING)
            payload = json.dumps({"lines": 0, "confidences": [], "model": self.model_version})
            if not self._persist(record, NO_PREDICTION_TEXT, payload, log_extra):
                self._enter(TaskState.FAILED)
                return RecognitionResult.error(
                    task, ERROR_TEXT, ErrorKind.TRANSPORT, "could not persist empty result"
                )
            self._enter(TaskState.DONE)
            return RecognitionResult.no_result(task, NO_PREDICTION_TEXT)
        except Exception as e:
            if isinstance(e, (RetryableTaskError, TerminalTaskError)):
                logger.warning(f"[TaskExecutor] Recognition failed: {e}", extra=log_extra)
            else:
                logger.error(f"[TaskExecutor] Unexpected recognition failure: {e}", exc_info=True, extra=log_extra)
            return self._finalize_error(task, record, e, log_extra)

        # --- persist ---
        self._enter(TaskState.PERSISTING)
        payload = json.dumps(
            {
                "lines": len(recognitions),
                "confidences": [round(r.confidence, 4) if math.isfinite(r.confidence) else None for r in recognitions],
                "model": self.model_version,
            }
        )
        if not self._persist(record, text, payload, log_extra):
            self._enter(TaskState.FAILED)
            return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.TRANSPORT, "could not persist recognized text")

        self._enter(TaskState.DONE)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"[TaskExecutor] Recognized {len(texts)}/{len(recognitions)} lines in {elapsed_ms:.0f}ms",
            extra=log_extra,
        )
        return RecognitionResult.ok(task, text)

    def _persist(self, record: PredictionRecord, text: str, payload: str, log_extra: dict) -> bool:
        """Single final write of the record. Returns False if it could not be stored."""
        try:
            self.store.update_prediction(replace(record, text=text, auxiliary_payload=payload))
        except (RetryableTaskError, TerminalTaskError) as e:
            logger.error(f"[TaskExecutor] Failed to finalize record {record.id}: {e}", extra=log_extra)
            return False
        return True

    def _finalize_error(
        self, task: RecognitionTask, record: PredictionRecord, exc: Exception, log_extra: dict
    ) -> RecognitionResult:
        self._enter(TaskState.PERSISTING)
        payload = json.dumps({"error": type(exc).__name__, "model": self.model_version})
        self._persist(record, ERROR_TEXT, payload, log_extra)
        self._enter(TaskState.FAILED)
        return RecognitionResult.error(task, ERROR_TEXT, ErrorKind.from_exception(exc), str(exc))
