"""Per-stage wall-clock timing."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable


@dataclass
class StageTiming:
    """Timing record for a single pipeline stage."""

    stage_name: str = ""
    duration_s: float = 0.0
    start_time: str = ""
    end_time: str = ""


@dataclass
class StageTimer:
    """Tracks how long each stage of a deployment took."""

    stages: dict[str, StageTiming] = field(default_factory=dict)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    _current_stage: str | None = field(default=None, repr=False)
    _current_start: float = field(default=0.0, repr=False)

    def start_stage(self, stage: str) -> None:
        """Mark the start of *stage*.  An unfinished previous stage is closed first."""
        if self._current_stage is not None:
            self.end_stage()
        self._current_stage = stage
        self._current_start = self.clock()
        if stage not in self.stages:
            self.stages[stage] = StageTiming(
                stage_name=stage,
                start_time=datetime.now(timezone.utc).isoformat(),
            )

    def end_stage(self) -> float:
        """Close the current stage and return its duration in seconds."""
        stage = self._current_stage
        if stage is None:
            return 0.0
        elapsed = self.clock() - self._current_start
        record = self.stages[stage]
        record.duration_s += elapsed
        record.end_time = datetime.now(timezone.utc).isoformat()
        self._current_stage = None
        return elapsed

    @property
    def current_stage(self) -> str | None:
        return self._current_stage

    @property
    def stage_durations(self) -> dict[str, float]:
        """Mapping of stage name to cumulative seconds."""
        return {name: round(t.duration_s, 3) for name, t in self.stages.items()}

    @property
    def total_duration(self) -> float:
        return sum(t.duration_s for t in self.stages.values())

    def to_dict(self) -> dict[str, Any]:
        """Serialise timer state."""
        return {
            "total_duration_s": round(self.total_duration, 3),
            "stages": {
                name: {
                    "stage_name": t.stage_name,
                    "duration_s": round(t.duration_s, 3),
                    "start_time": t.start_time,
                    "end_time": t.end_time,
                }
                for name, t in self.stages.items()
            },
        }
