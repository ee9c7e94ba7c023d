"""Timing and export statistics.

This module implements the timing utility used by the export pipeline and a
container for per-export metrics (face counts, texture sizes, stage timings).
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)


class ExportMetrics:
    """Statistics collected while exporting a model."""

    def __init__(self):
        self.metrics = {
            "n_vertices": 0,
            "n_faces": 0,
            "n_triangles": 0,
            "n_perspectives": 0,
            "textured_faces": 0,
            "untextured_faces": [],
            "texture_pixels": 0,
            "face_perspectives": {},
            "success": False,
            "runtime_s": 0.0,
            "stage_timings": {},
        }

    def update(self, metric_name: str, value: Union[int, float, bool, Dict]) -> None:
        self.metrics[metric_name] = value

    def update_stage_timing(self, stage_name: str, time_s: float) -> None:
        self.metrics["stage_timings"][stage_name] = time_s

    def record_texture(self, face_index: int, perspective_index: int, width: int, height: int) -> None:
        """Record a face textured from a perspective.

        Args:
            face_index: Index of the face in export order
            perspective_index: Index of the selected perspective
            width: Texture width in pixels
            height: Texture height in pixels
        """
        self.metrics["textured_faces"] += 1
        self.metrics["texture_pixels"] += width * height
        self.metrics["face_perspectives"][face_index] = perspective_index

    def record_untextured(self, face_index: int) -> None:
        self.metrics["untextured_faces"].append(face_index)

    def to_dict(self) -> Dict:
        return {
            key: (value.copy() if isinstance(value, (dict, list)) else value)
            for key, value in self.metrics.items()
        }

    def summary(self) -> str:
        """Generate a human-readable summary of metrics.

        Returns:
            Summary string
        """
        lines = [
            "Export Metrics:",
            f"  Vertices: {self.metrics['n_vertices']}",
            f"  Faces: {self.metrics['n_faces']} ({self.metrics['n_triangles']} triangles)",
            f"  Perspectives: {self.metrics['n_perspectives']}",
            f"  Textured faces: {self.metrics['textured_faces']}",
        ]

        if self.metrics["untextured_faces"]:
            untextured = ", ".join(str(i) for i in self.metrics["untextured_faces"])
            lines.append(f"  Untextured faces: {untextured}")

        lines.append(f"  Texture pixels: {self.metrics['texture_pixels']}")
        lines.append(f"  Success: {self.metrics['success']}")
        lines.append(f"  Total runtime: {self.metrics['runtime_s']:.2f}s")

        if self.metrics["stage_timings"]:
            lines.append("  Stage timings:")
            for stage, time_s in self.metrics["stage_timings"].items():
                lines.append(f"    {stage}: {time_s:.2f}s")

        return "\n".join(lines)


class Timer:
    """Wall-clock timer splitting a run into named stages.

    A stage lasts from the end of the previous stage (or the start of the
    timer) until ``stage`` is called. With metrics attached, stage durations
    are recorded as stage timings and the total as ``runtime_s``.
    """

    def __init__(self, name: str, metrics: Optional[ExportMetrics] = None):
        self.name = name
        self.metrics = metrics
        self.start_time: Optional[float] = None
        self._stage_start: Optional[float] = None

    def start(self) -> None:
        self.start_time = time.perf_counter()
        self._stage_start = self.start_time

    @property
    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time

    def stage(self, stage_name: str) -> float:
        """Close the current stage.

        Args:
            stage_name: Name the stage is recorded under

        Returns:
            Stage duration in seconds

        Raises:
            RuntimeError: If the timer was not started
        """
        if self._stage_start is None:
            raise RuntimeError(f"{self.name}: stage '{stage_name}' ended before the timer was started")

        now = time.perf_counter()
        duration = now - self._stage_start
        self._stage_start = now

        logger.debug(f"{self.name} - {stage_name}: {duration:.4f}s")
        if self.metrics is not None:
            self.metrics.update_stage_timing(stage_name, duration)
        return duration

    def stop(self) -> float:
        """Total time since start, recorded as the run time."""
        elapsed = self.elapsed
        logger.debug(f"{self.name}: {elapsed:.4f}s")
        if self.metrics is not None:
            self.metrics.update("runtime_s", elapsed)
        return elapsed
