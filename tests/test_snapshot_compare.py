"""Exact image comparison on synthetic PNGs."""

import json

import numpy as np
import pytest
from PIL import Image

from conftest import make_image, with_patch
from uiharness.framework import PreflightError
from uiharness.snapshot_compare import (
    compare_image_files,
    compare_images,
    format_diff_result,
    load_rgba,
)


def _write(path, img):
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)
    return path


def test_image_matches_itself(tmp_path):
    path = _write(tmp_path / "a.png", make_image())
    result = compare_images(path, path)
    assert result.identical
    assert result.diff_pixels == 0
    assert result.bbox is None
    assert result.describe() == "identical (32x24)"


def test_rgb_and_rgba_with_same_pixels_match(tmp_path):
    rgb = Image.new("RGB", (10, 10), (200, 200, 200))
    assert compare_images(rgb, make_image((10, 10))).identical


def test_small_patch_is_found(tmp_path):
    base = make_image((64, 48))
    fresh = with_patch(base, (10, 12, 21, 23))
    result = compare_images(base, fresh)
    assert not result.identical
    assert result.diff_pixels == 12 * 12
    assert result.bbox == (10, 12, 21, 23)
    assert result.total_pixels == 64 * 48
    assert "144 of 3072 pixels differ" in result.describe()


def test_single_channel_difference_counts(tmp_path):
    base = make_image((4, 4))
    fresh = base.copy()
    fresh.putpixel((3, 0), (200, 200, 201, 255))
    result = compare_images(base, fresh)
    assert result.diff_pixels == 1
    assert result.bbox == (3, 0, 3, 0)


def test_size_mismatch_is_a_difference_not_an_error():
    result = compare_images(make_image((32, 24)), make_image((24, 32)))
    assert not result.identical
    assert not result.size_matches
    assert result.describe() == "size mismatch: baseline=32x24, fresh=24x32"


def test_diff_image_marks_changed_pixels_red(tmp_path):
    base = make_image((16, 16))
    fresh = with_patch(base, (2, 2, 3, 3))
    diff_out = tmp_path / "out" / "step.diff"
    compare_images(base, fresh, diff_out=diff_out)

    written = tmp_path / "out" / "step.png"
    assert written.is_file()
    arr = np.asarray(Image.open(written).convert("RGBA"))
    assert tuple(arr[2, 2]) == (255, 0, 0, 255)
    assert tuple(arr[10, 10]) == (50, 50, 50, 255)


def test_no_diff_image_for_identical_images(tmp_path):
    diff_out = tmp_path / "diff.png"
    compare_images(make_image(), make_image(), diff_out=diff_out)
    assert not diff_out.exists()


def test_json_summary(tmp_path):
    base = make_image((8, 8))
    fresh = with_patch(base, (0, 0, 1, 0))
    compare_images(base, fresh, json_out=tmp_path / "summary.json")
    payload = json.loads((tmp_path / "summary.json").read_text())
    assert payload["identical"] is False
    assert payload["diff_pixels"] == 2
    assert payload["bbox"] == [0, 0, 1, 0]


def test_compare_image_files_writes_into_out_dir(tmp_path):
    base = _write(tmp_path / "01 - start.png", make_image())
    fresh = _write(tmp_path / "01 - start.new.png", with_patch(make_image(), (0, 0, 4, 4)))
    result = compare_image_files(base, fresh, out_dir=tmp_path / "report")
    assert not result.identical
    assert (tmp_path / "report" / "01 - start.diff.png").is_file()
    assert (tmp_path / "report" / "01 - start.json").is_file()


def test_missing_file_raises(tmp_path):
    with pytest.raises(PreflightError, match="not found"):
        load_rgba(tmp_path / "nope.png")


def test_unreadable_file_raises(tmp_path):
    bogus = tmp_path / "bogus.png"
    bogus.write_bytes(b"not a png")
    with pytest.raises(PreflightError, match="Failed to open"):
        load_rgba(bogus)


def test_format_diff_result():
    text = format_diff_result(compare_images(make_image(), make_image()))
    assert "✓ PASS" in text
    text = format_diff_result(compare_images(make_image((2, 2)), make_image((3, 3))))
    assert "✗ FAIL: size mismatch" in text
