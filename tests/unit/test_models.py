"""
Unit tests for core data models, alphabet and error classification.
"""

import pickle

import numpy as np
import pytest

from exam_hwr.core.models import ErrorKind, PredictionRecord, RecognitionResult, RecognitionTask
from exam_hwr.errors import (
    EmptyResultError,
    InferenceError,
    InferenceShapeError,
    InputValidationError,
    MissingCredentialError,
    ModelNotFoundError,
    RetryableTaskError,
    TerminalTaskError,
    TransportError,
)
from exam_hwr.recognition.alphabet import (
    BLANK_SYMBOL,
    MLT_V3,
    MLT_V3_NUM_CLASSES,
    MLT_V3_SYMBOLS,
    UNKNOWN_SYMBOL,
    Alphabet,
)


class TestAlphabet:
    def test_mlt_v3_layout(self):
        assert len(MLT_V3_SYMBOLS) == 103
        assert len(MLT_V3) == MLT_V3_NUM_CLASSES == 108
        assert MLT_V3.symbol(0) == BLANK_SYMBOL
        assert MLT_V3.symbol(1) == " "
        assert MLT_V3.symbol(102) == "€"
        assert len(set(MLT_V3_SYMBOLS)) == len(MLT_V3_SYMBOLS)

    def test_out_of_range_is_unknown(self):
        assert MLT_V3.symbol(103) == UNKNOWN_SYMBOL
        assert MLT_V3.symbol(107) == UNKNOWN_SYMBOL
        assert MLT_V3.symbol(-1) == UNKNOWN_SYMBOL

    def test_to_text(self):
        a = MLT_V3_SYMBOLS.index("a")
        assert MLT_V3.to_text([a, a + 1, a + 2]) == "abc"

    def test_rejects_too_few_classes(self):
        with pytest.raises(ValueError, match="num_classes"):
            Alphabet(version="x", symbols=("<BLANK>", "a", "b"), num_classes=2)

    def test_rejects_bad_blank(self):
        with pytest.raises(ValueError, match="blank_index"):
            Alphabet(version="x", symbols=("<BLANK>",), num_classes=1, blank_index=3)


class TestImageRegion:
    def test_validate_ok(self, make_region):
        make_region().validate()

    def test_validate_zero_dimension(self, make_region):
        region = make_region()
        region.height = 0
        with pytest.raises(InputValidationError):
            region.validate()

    def test_validate_shape_mismatch(self, make_region):
        region = make_region(width=40, height=20)
        region.width = 41
        with pytest.raises(InputValidationError, match="does not match"):
            region.validate()

    def test_release_keeps_metadata(self, make_region):
        region = make_region(width=40, height=20)
        region.release()
        assert region.pixel_buffer is None
        assert (region.width, region.height) == (40, 20)
        assert region.result_text is None

    def test_attach_result_releases_buffer(self, make_region):
        region = make_region()
        region.attach_result("Bonjour")
        assert region.pixel_buffer is None
        assert region.result_text == "Bonjour"
        with pytest.raises(InputValidationError, match="released"):
            region.validate()


class TestRecognitionTask:
    def test_for_region(self, make_region):
        task = RecognitionTask.for_region(make_region(student_index=4, question_id=9), 42, "tok")
        assert task.key == (4, 9)
        assert task.exam_id == "42"

    def test_token_not_in_repr(self, make_task):
        assert "secret" not in repr(make_task(auth_token="secret"))

    def test_picklable(self, make_task):
        task = make_task()
        clone = pickle.loads(pickle.dumps(task))
        assert clone.key == task.key
        assert np.array_equal(clone.region.pixel_buffer, task.region.pixel_buffer)


class TestErrorKind:
    @pytest.mark.parametrize(
        "exc,kind",
        [
            (InputValidationError("x"), ErrorKind.INPUT_VALIDATION),
            (TransportError("x"), ErrorKind.TRANSPORT),
            (MissingCredentialError("x"), ErrorKind.MISSING_CREDENTIAL),
            (InferenceShapeError("x"), ErrorKind.INFERENCE_SHAPE),
            (ModelNotFoundError("x"), ErrorKind.INFERENCE),
            (InferenceError("x"), ErrorKind.INFERENCE),
            (KeyError("x"), ErrorKind.INTERNAL),
        ],
    )
    def test_from_exception(self, exc, kind):
        assert ErrorKind.from_exception(exc) is kind

    def test_retryable_kinds(self):
        assert [k for k in ErrorKind if k.retryable] == [ErrorKind.TRANSPORT, ErrorKind.IN_PROGRESS]

    def test_hierarchy(self):
        assert issubclass(TransportError, RetryableTaskError)
        for cls in (InputValidationError, MissingCredentialError, InferenceError, EmptyResultError):
            assert issubclass(cls, TerminalTaskError)


class TestRecognitionResult:
    def test_constructors(self, make_task):
        task = make_task()
        assert RecognitionResult.ok(task, "a").status == "ok"
        assert RecognitionResult.no_result(task, "none").status == "no_result"
        err = RecognitionResult.error(task, "err", ErrorKind.INFERENCE, "boom")
        assert err.is_error
        assert err.key == task.key
        assert err.error_kind is ErrorKind.INFERENCE


class TestPredictionRecord:
    def test_payload_keys(self):
        record = PredictionRecord(
            exam_id="42", question_id=7, student_id=3, text="t", zone_tag="Z", image_snapshot="data:...", id=5
        )
        assert record.to_payload() == {
            "id": 5,
            "studentId": 3,
            "examId": "42",
            "questionId": 7,
            "text": "t",
            "jsonData": "{}",
            "zonegeneratedid": "Z",
            "imageData": "data:...",
        }

    def test_from_payload(self):
        record = PredictionRecord.from_payload(
            {"id": 5, "studentId": "3", "questionId": 7, "examId": 42, "text": None, "jsonData": None}
        )
        assert record.id == 5
        assert record.student_id == 3
        assert record.exam_id == "42"
        assert record.text == ""
        assert record.auxiliary_payload == "{}"

    def test_snapshot_not_in_repr(self):
        record = PredictionRecord(exam_id="1", question_id=1, student_id=1, text="", image_snapshot="AAAA")
        assert "AAAA" not in repr(record)
