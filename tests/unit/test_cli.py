"""
Unit tests for the offline CLI commands.
"""

import json
import logging

import numpy as np
import pytest
from click.testing import CliRunner

from exam_hwr.cli.main import cli
from exam_hwr.cli.predict import iter_manifest
from exam_hwr.errors import InputValidationError
from exam_hwr.io.images import encode_png


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestDecodeCommand:
    def test_single_matrix(self, tmp_path, probs_for):
        path = tmp_path / "probs.npy"
        np.save(path, probs_for("Bonjour"))
        result = CliRunner().invoke(cli, ["decode", str(path)])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "Bonjour"

    def test_batch(self, tmp_path, probs_for):
        path = tmp_path / "probs.npy"
        np.save(path, np.stack([probs_for("oui"), probs_for("non")]))
        result = CliRunner().invoke(cli, ["decode", str(path)])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "oui, non"

    def test_max_len(self, tmp_path, probs_for):
        path = tmp_path / "probs.npy"
        np.save(path, probs_for("abc"))
        result = CliRunner().invoke(cli, ["decode", str(path), "--max-len", "2"])
        assert result.output.strip() == "a"

    def test_max_len_applies_to_every_batch_row(self, tmp_path, probs_for):
        path = tmp_path / "probs.npy"
        np.save(path, np.stack([probs_for("oui"), probs_for("non")]))
        result = CliRunner().invoke(cli, ["decode", str(path), "--max-len", "2"])
        assert result.exit_code == 0, result.output
        assert result.output.strip() == "o, n"


class TestManifest:
    def test_iter_manifest(self, tmp_path):
        (tmp_path / "crops").mkdir()
        (tmp_path / "crops" / "q7.png").write_bytes(encode_png(np.zeros((10, 30, 3), dtype=np.uint8)))
        manifest = tmp_path / "regions.json"
        manifest.write_text(
            json.dumps({"regions": [{"pageNumber": 2, "questionId": 7, "studentIndex": 3, "image": "crops/q7.png"}]}),
            encoding="utf-8",
        )
        regions = list(iter_manifest(manifest))
        assert len(regions) == 1
        region = regions[0]
        assert (region.width, region.height) == (30, 10)
        assert (region.page_number, region.question_id, region.student_index) == (2, 7, 3)
        region.validate()

    def test_plain_list(self, tmp_path):
        (tmp_path / "a.png").write_bytes(encode_png(np.zeros((4, 4, 3), dtype=np.uint8)))
        manifest = tmp_path / "regions.json"
        manifest.write_text(json.dumps([{"questionId": 1, "studentIndex": 1, "image": "a.png"}]), encoding="utf-8")
        assert next(iter_manifest(manifest)).page_number == 1

    def test_images_are_loaded_lazily(self, tmp_path):
        (tmp_path / "a.png").write_bytes(encode_png(np.zeros((4, 4, 3), dtype=np.uint8)))
        manifest = tmp_path / "regions.json"
        entries = [
            {"questionId": 1, "studentIndex": 1, "image": "a.png"},
            {"questionId": 1, "studentIndex": 2, "image": "missing.png"},
        ]
        manifest.write_text(json.dumps(entries), encoding="utf-8")

        regions = iter_manifest(manifest)
        assert next(regions).student_index == 1
        with pytest.raises(InputValidationError):
            next(regions)
