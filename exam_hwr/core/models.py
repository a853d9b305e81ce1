from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional

import numpy.typing as npt

from exam_hwr.errors import (
    InferenceError,
    InferenceShapeError,
    InputValidationError,
    MissingCredentialError,
    TransportError,
)

TaskKey = tuple[int, int]  # (student_id, question_id)


@dataclass
class ImageRegion:
    """
    A cropped answer zone of one student's scanned page.

    The pixel buffer is dropped as soon as it has been encoded for upload,
    and the result text is attached when the task completes.
    """
    page_number: int
    pixel_buffer: Optional[npt.NDArray]  # H x W x C uint8; None once released
    width: int
    height: int
    question_id: int
    student_index: int          # 1-based student number
    result_text: Optional[str] = None

    def validate(self) -> None:
        if self.pixel_buffer is None:
            raise InputValidationError("region pixel buffer was already released")
        if self.width <= 0 or self.height <= 0:
            raise InputValidationError(f"region has zero dimension: {self.width}x{self.height}")
        shape = self.pixel_buffer.shape
        if len(shape) not in (2, 3) or shape[0] != self.height or shape[1] != self.width:
            raise InputValidationError(
                f"pixel buffer shape {shape} does not match region {self.width}x{self.height}"
            )

    def release(self) -> None:
        self.pixel_buffer = None

    def attach_result(self, text: str) -> None:
        self.result_text = text
        self.release()


@dataclass(frozen=True)
class RecognitionTask:
    """Unit of work handed to an isolated execution unit."""
    region: ImageRegion
    student_id: int
    question_id: int
    exam_id: str
    auth_token: Optional[str] = field(default=None, repr=False)

    @classmethod
    def for_region(cls, region: ImageRegion, exam_id: str, auth_token: Optional[str]) -> RecognitionTask:
        return cls(
            region=region,
            student_id=region.student_index,
            question_id=region.question_id,
            exam_id=str(exam_id),
            auth_token=auth_token,
        )

    @property
    def key(self) -> TaskKey:
        return (self.student_id, self.question_id)


class ErrorKind(str, enum.Enum):
    INPUT_VALIDATION = "input_validation"
    TRANSPORT = "transport"
    MISSING_CREDENTIAL = "missing_credential"
    INFERENCE = "inference"
    INFERENCE_SHAPE = "inference_shape"
    INTERNAL = "internal"
    IN_PROGRESS = "in_progress"  # record still holds the pending placeholder

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.TRANSPORT, ErrorKind.IN_PROGRESS)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorKind:
        # most specific first: InferenceShapeError is an InferenceError
        if isinstance(exc, InputValidationError):
            return cls.INPUT_VALIDATION
        if isinstance(exc, TransportError):
            return cls.TRANSPORT
        if isinstance(exc, MissingCredentialError):
            return cls.MISSING_CREDENTIAL
        if isinstance(exc, InferenceShapeError):
            return cls.INFERENCE_SHAPE
        if isinstance(exc, InferenceError):
            return cls.INFERENCE
        return cls.INTERNAL


ResultStatus = Literal["ok", "no_result", "error"]


@dataclass(frozen=True)
class RecognitionResult:
    """
    Terminal outcome of one task: recognized text, an explicit "nothing found",
    or an error. Exactly one is produced per task.
    """
    status: ResultStatus
    student_id: int
    question_id: int
    text: str
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    from_existing: bool = False  # text came from an already finalized record

    @classmethod
    def ok(cls, task: RecognitionTask, text: str, from_existing: bool = False) -> RecognitionResult:
        return cls("ok", task.student_id, task.question_id, text, from_existing=from_existing)

    @classmethod
    def no_result(cls, task: RecognitionTask, text: str) -> RecognitionResult:
        return cls("no_result", task.student_id, task.question_id, text)

    @classmethod
    def error(cls, task: RecognitionTask, text: str, kind: ErrorKind, message: str) -> RecognitionResult:
        return cls("error", task.student_id, task.question_id, text, error_kind=kind, message=message)

    @property
    def key(self) -> TaskKey:
        return (self.student_id, self.question_id)

    @property
    def is_error(self) -> bool:
        return self.status == "error"


@dataclass(frozen=True)
class PredictionRecord:
    """Persisted prediction. Identity is (exam_id, question_id, student_id); id is assigned by the server."""
    exam_id: str
    question_id: int
    student_id: int
    text: str
    auxiliary_payload: str = "{}"
    zone_tag: Optional[str] = None
    image_snapshot: Optional[str] = field(default=None, repr=False)  # base64 PNG
    id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "studentId": self.student_id,
            "examId": self.exam_id,
            "questionId": self.question_id,
            "text": self.text,
            "jsonData": self.auxiliary_payload,
            "zonegeneratedid": self.zone_tag,
        }
        if self.id is not None:
            payload["id"] = self.id
        if self.image_snapshot is not None:
            payload["imageData"] = self.image_snapshot
        return payload

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> PredictionRecord:
        return cls(
            id=data.get("id"),
            exam_id=str(data.get("examId") or ""),
            question_id=int(data["questionId"]) if data.get("questionId") is not None else -1,
            student_id=int(data["studentId"]) if data.get("studentId") is not None else -1,
            text=data.get("text") or "",
            auxiliary_payload=data.get("jsonData") or "{}",
            zone_tag=data.get("zonegeneratedid"),
            image_snapshot=data.get("imageData"),
        )
