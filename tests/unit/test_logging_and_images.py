"""
Unit tests for JSON logging and image conversions.
"""

import json
import logging
import sys

import numpy as np
import pytest

from exam_hwr.errors import InputValidationError
from exam_hwr.io.images import (
    DATA_URL_PREFIX,
    decode_png,
    encode_png,
    from_base64,
    load_image,
    to_base64,
    to_data_url,
)
from exam_hwr.logging_setup import JsonFormatter, setup_logging


class TestJsonFormatter:
    def test_extra_fields_are_top_level(self):
        record = logging.LogRecord("exam_hwr.core", logging.INFO, __file__, 1, "done %s", ("ok",), None)
        record.student_id = 3
        payload = json.loads(JsonFormatter().format(record))
        assert payload["msg"] == "done ok"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "exam_hwr.core"
        assert payload["student_id"] == 3
        assert "args" not in payload

    def test_exception_is_formatted(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        payload = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: boom" in payload["exc_info"]

    def test_non_ascii_kept(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "Erreur de prédiction", (), None)
        assert "prédiction" in JsonFormatter().format(record)


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_levels_from_env(self, monkeypatch):
        monkeypatch.setenv("HWR_ROOT_LOG_LEVEL", "ERROR")
        monkeypatch.setenv("HWR_APP_LOG_LEVEL", "DEBUG")
        monkeypatch.delenv("HWR_TIMINGS_LOG_LEVEL", raising=False)
        setup_logging()
        assert logging.getLogger().level == logging.ERROR
        assert logging.getLogger("exam_hwr").level == logging.DEBUG
        assert logging.getLogger("exam_hwr_timings").level == logging.ERROR

    def test_verbose(self):
        setup_logging(verbose=True)
        assert logging.getLogger("exam_hwr").level == logging.DEBUG
        assert logging.getLogger("exam_hwr_timings").level == logging.INFO

    def test_custom_handler(self):
        handler = logging.NullHandler()
        setup_logging(handler=handler)
        assert logging.getLogger().handlers == [handler]


class TestImages:
    def test_png_keeps_rgb_order(self):
        pixels = np.zeros((4, 6, 3), dtype=np.uint8)
        pixels[..., 0] = 255
        decoded = decode_png(encode_png(pixels))
        assert decoded.shape == (4, 6, 3)
        assert np.array_equal(decoded, pixels)

    def test_grayscale_decodes_as_rgb(self):
        decoded = decode_png(encode_png(np.full((3, 3), 128, dtype=np.uint8)))
        assert decoded.shape == (3, 3, 3)

    def test_encode_empty(self):
        with pytest.raises(InputValidationError):
            encode_png(np.zeros((0, 0, 3), dtype=np.uint8))

    def test_decode_garbage(self):
        with pytest.raises(InputValidationError):
            decode_png(b"not a png")

    def test_base64_and_data_url(self):
        assert from_base64(to_base64(b"\x00\x01")) == b"\x00\x01"
        url = to_data_url(b"abc")
        assert url.startswith(DATA_URL_PREFIX)
        assert from_base64(url) == b"abc"

    def test_invalid_base64(self):
        with pytest.raises(InputValidationError):
            from_base64("%%%")

    def test_load_image(self, tmp_path):
        pixels = np.zeros((5, 7, 3), dtype=np.uint8)
        pixels[..., 2] = 200
        path = tmp_path / "line.png"
        path.write_bytes(encode_png(pixels))
        assert np.array_equal(load_image(path), pixels)

    def test_load_missing_image(self, tmp_path):
        with pytest.raises(InputValidationError):
            load_image(tmp_path / "absent.png")
