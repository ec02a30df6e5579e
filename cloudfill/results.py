"""
Typed results for a cloud filling run.

A run either skips (gap fraction at or below threshold), fills, or fails.
Each result keeps the human-readable status message through `.message`.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class FillStatus(str, Enum):
    """Cloud filling outcome status."""
    SKIPPED = "skipped"
    FILLED = "filled"
    FAILED = "failed"


@dataclass
class Skipped:
    """Gap fraction did not exceed the threshold; nothing was written."""

    fraction: float
    threshold: float
    status: str = FillStatus.SKIPPED.value

    @property
    def ok(self):
        return True

    @property
    def message(self):
        return (f"Cloud cover ({self.fraction:.3f}) below threshold set "
                f"({self.threshold:f}), no cloud filling performed")

    def to_dict(self):
        return {
            "status": self.status,
            "fraction": self.fraction,
            "threshold": self.threshold,
            "message": self.message,
        }


@dataclass
class Filled:
    """Gaps were replaced with MODIS values and the output was written."""

    input_path: str
    output_path: str
    fraction: float = 0.0
    threshold: float = 0.0
    tiles: List[str] = field(default_factory=list)
    granules: List[str] = field(default_factory=list)
    filled_cells: int = 0
    unfilled_cells: int = 0
    status: str = FillStatus.FILLED.value

    @property
    def ok(self):
        return True

    @property
    def message(self):
        return (f"cloud filling performed successfully for input file {self.input_path} \n"
                f" output written to {self.output_path}")

    def to_dict(self):
        return {
            "status": self.status,
            "input_path": self.input_path,
            "output_path": self.output_path,
            "fraction": self.fraction,
            "threshold": self.threshold,
            "tiles": list(self.tiles),
            "granules": list(self.granules),
            "filled_cells": self.filled_cells,
            "unfilled_cells": self.unfilled_cells,
            "message": self.message,
        }


@dataclass
class Failed:
    """The pipeline raised a CloudFillError."""

    error_kind: str
    detail: str
    input_path: Optional[str] = None
    status: str = FillStatus.FAILED.value

    @property
    def ok(self):
        return False

    @property
    def message(self):
        return f"cloud filling failed ({self.error_kind}): {self.detail}"

    def to_dict(self):
        return {
            "status": self.status,
            "input_path": self.input_path,
            "error_kind": self.error_kind,
            "detail": self.detail,
            "message": self.message,
        }
