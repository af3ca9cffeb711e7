"""Exact screenshot comparison for snapshot regression tests.

Compares two images pixel-by-pixel on canonical RGBA data and optionally
writes a highlighted diff image and JSON summary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
from PIL import Image

from uiharness.framework import PreflightError

ImageSource = Union[Image.Image, Path, str]


@dataclass
class ImageDiffResult:
    """Result of an exact image comparison."""

    identical: bool
    baseline_size: Tuple[int, int]
    fresh_size: Tuple[int, int]
    total_pixels: int
    diff_pixels: int
    bbox: Optional[Tuple[int, int, int, int]]  # (min_x, min_y, max_x, max_y) or None

    @property
    def size_matches(self) -> bool:
        return self.baseline_size == self.fresh_size

    @property
    def diff_pct(self) -> float:
        if not self.total_pixels:
            return 0.0
        return (self.diff_pixels / float(self.total_pixels)) * 100.0

    def describe(self) -> str:
        """One-line diagnostic with sizes and the difference indicator."""
        if self.identical:
            return f"identical ({self.fresh_size[0]}x{self.fresh_size[1]})"
        if not self.size_matches:
            return (
                "size mismatch: baseline="
                f"{self.baseline_size[0]}x{self.baseline_size[1]}, "
                f"fresh={self.fresh_size[0]}x{self.fresh_size[1]}"
            )
        return (
            f"{self.diff_pixels} of {self.total_pixels} pixels differ "
            f"({self.diff_pct:.3f}%) in {self.fresh_size[0]}x{self.fresh_size[1]}, "
            f"bbox={self.bbox}"
        )


def _ensure_png(path: Path) -> Path:
    """Return the path with a .png suffix (without changing the filename if it already has one)."""

    if path.suffix.lower() == ".png":
        return path
    return path.with_suffix(".png")


def load_rgba(source: ImageSource) -> Image.Image:
    """Load an image as RGBA, the canonical form for comparisons."""
    if isinstance(source, Image.Image):
        return source.convert("RGBA")
    path = Path(source)
    if not path.is_file():
        raise PreflightError(f"Screenshot not found: {path}")
    try:
        with Image.open(path) as img:
            return img.convert("RGBA")
    except OSError as exc:
        raise PreflightError(f"Failed to open screenshot {path}: {exc}") from exc


def compare_images(
    baseline: ImageSource,
    fresh: ImageSource,
    diff_out: Optional[Path] = None,
    json_out: Optional[Path] = None,
) -> ImageDiffResult:
    """Compare two images at the pixel level.

    Args:
        baseline: Stored reference image.
        fresh: Newly captured image.
        diff_out: Optional path for a visual diff image (differing pixels red).
        json_out: Optional path for a JSON summary report.

    Returns:
        ImageDiffResult. Differing dimensions are a mismatch, not an error.
    """

    img_base = load_rgba(baseline)
    img_fresh = load_rgba(fresh)

    width, height = img_fresh.size
    total_pixels = width * height

    if img_base.size != img_fresh.size:
        result = ImageDiffResult(
            identical=False,
            baseline_size=img_base.size,
            fresh_size=img_fresh.size,
            total_pixels=total_pixels,
            diff_pixels=total_pixels,
            bbox=None,
        )
    else:
        arr_base = np.asarray(img_base, dtype=np.uint8)
        arr_fresh = np.asarray(img_fresh, dtype=np.uint8)
        mask = np.any(arr_base != arr_fresh, axis=2)
        diff_pixels = int(mask.sum())

        bbox = None
        if diff_pixels:
            ys, xs = np.nonzero(mask)
            bbox = (int(xs.min()), int(ys.min()), int(xs.max()), int(ys.max()))

            if diff_out is not None:
                diff_out = _ensure_png(Path(diff_out))
                # Dimmed copy of the fresh image with differing pixels in red
                diff_arr = (arr_fresh // 4).copy()
                diff_arr[:, :, 3] = 255
                diff_arr[mask] = (255, 0, 0, 255)
                diff_out.parent.mkdir(parents=True, exist_ok=True)
                Image.fromarray(diff_arr).save(diff_out)

        result = ImageDiffResult(
            identical=(diff_pixels == 0),
            baseline_size=img_base.size,
            fresh_size=img_fresh.size,
            total_pixels=total_pixels,
            diff_pixels=diff_pixels,
            bbox=bbox,
        )

    if json_out is not None:
        json_out = Path(json_out).with_suffix(".json")
        json_out.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "identical": result.identical,
            "baseline_size": list(result.baseline_size),
            "fresh_size": list(result.fresh_size),
            "total_pixels": result.total_pixels,
            "diff_pixels": result.diff_pixels,
            "diff_pct": result.diff_pct,
            "bbox": result.bbox,
        }
        json_out.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    return result


def compare_image_files(
    baseline_path: Path,
    fresh_path: Path,
    out_dir: Optional[Path] = None,
) -> ImageDiffResult:
    """Compare two image files, writing ``<fresh>.diff.png`` and ``<fresh>.json`` into ``out_dir``."""
    diff_out = json_out = None
    if out_dir is not None:
        stem = Path(fresh_path).name.split(".")[0]
        diff_out = Path(out_dir) / f"{stem}.diff.png"
        json_out = Path(out_dir) / f"{stem}.json"
    return compare_images(baseline_path, fresh_path, diff_out=diff_out, json_out=json_out)


def format_diff_result(result: ImageDiffResult) -> str:
    lines = []
    lines.append("=" * 70)
    lines.append("IMAGE COMPARISON")
    lines.append("=" * 70)
    lines.append(f"Baseline size: {result.baseline_size[0]}x{result.baseline_size[1]}")
    lines.append(f"Fresh size:    {result.fresh_size[0]}x{result.fresh_size[1]}")
    if result.identical:
        lines.append("✓ PASS: images are identical")
    else:
        lines.append(f"✗ FAIL: {result.describe()}")
    return "\n".join(lines)
