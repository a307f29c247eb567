"""Primary-monitor screen capture and region cropping."""

from __future__ import annotations

import base64
from dataclasses import dataclass

import mss
import mss.tools

from lumen.errors import ToolExecutionError


@dataclass(frozen=True)
class Screenshot:
    """Raw RGB pixels of one capture, in physical pixels."""

    rgb: bytes
    width: int
    height: int

    def to_png(self) -> bytes:
        return mss.tools.to_png(self.rgb, (self.width, self.height))

    def to_base64_png(self) -> str:
        return base64.b64encode(self.to_png()).decode("ascii")


@dataclass(frozen=True)
class Region:
    x: float
    y: float
    width: float
    height: float


def capture_primary_screen() -> Screenshot:
    with mss.mss() as sct:
        monitor = sct.monitors[1] if len(sct.monitors) > 1 else sct.monitors[0]
        shot = sct.grab(monitor)
        return Screenshot(rgb=bytes(shot.rgb), width=shot.width, height=shot.height)


def crop(screenshot: Screenshot, region: Region, *, scale_factor: float = 1.0) -> Screenshot:
    """Crop a logical-pixel region, clamped to the capture bounds."""
    x = max(int(region.x * scale_factor), 0)
    y = max(int(region.y * scale_factor), 0)
    cx = min(x, screenshot.width - 1)
    cy = min(y, screenshot.height - 1)
    cw = min(int(region.width * scale_factor), screenshot.width - cx)
    ch = min(int(region.height * scale_factor), screenshot.height - cy)
    if cw <= 0 or ch <= 0:
        raise ToolExecutionError("selected region is empty")

    stride = screenshot.width * 3
    rows = [screenshot.rgb[row * stride + cx * 3 : row * stride + (cx + cw) * 3] for row in range(cy, cy + ch)]
    return Screenshot(rgb=b"".join(rows), width=cw, height=ch)
