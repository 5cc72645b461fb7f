"""Append-only processing trace shared by every stage of one orchestration run."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProcessingStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int = Field(ge=1)
    action: str
    tool: str | None = None
    duration_ms: int = Field(default=0, ge=0)
    input: Any = None
    output: Any = None
    notes: str | None = None
    timestamp: datetime


class ProcessingTraceCollector:
    """Records tool invocations and orchestration milestones for one run.

    Steps are numbered from 1 in completion order. Inputs and outputs are
    deep-copied on record so later mutation by the caller cannot rewrite
    history, and ``snapshot()`` hands out a tuple, never the internal list.
    """

    def __init__(self) -> None:
        self._steps: list[ProcessingStep] = []
        self._lock = threading.Lock()

    def record(
        self,
        action: str,
        tool: str | None = None,
        duration_ms: int | float = 0,
        input: Any = None,
        output: Any = None,
        notes: str | None = None,
    ) -> ProcessingStep:
        input_copy = copy.deepcopy(input)
        output_copy = copy.deepcopy(output)
        with self._lock:
            step = ProcessingStep(
                step=len(self._steps) + 1,
                action=action,
                tool=tool,
                duration_ms=max(0, int(duration_ms)),
                input=input_copy,
                output=output_copy,
                notes=notes,
                timestamp=datetime.now(timezone.utc),
            )
            self._steps.append(step)
        return step

    def snapshot(self) -> tuple[ProcessingStep, ...]:
        with self._lock:
            return tuple(self._steps)

    def __len__(self) -> int:
        with self._lock:
            return len(self._steps)


def find_last(
    steps: Iterable[ProcessingStep],
    *,
    names: Iterable[str],
    with_output: bool = False,
) -> ProcessingStep | None:
    """Most recent step whose action or tool is one of *names*."""
    wanted = set(names)
    for step in reversed(tuple(steps)):
        if step.action not in wanted and step.tool not in wanted:
            continue
        if with_output and step.output is None:
            continue
        return step
    return None


def serialize_trace(steps: Iterable[ProcessingStep]) -> list[dict[str, Any]]:
    return [step.model_dump(mode="json") for step in steps]
