"""Sequential step runner for vhost-user-lab plays."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from vhostlab.exceptions import WorkflowError
from vhostlab.utils import log


class StepStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    FAILED = "failed"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    REBOOT_REQUIRED = "reboot_required"


@dataclass
class EndRun:
    """Returned by a step action to stop the run without failing it."""

    status: RunStatus
    message: str


@dataclass
class Step:
    name: str
    action: Callable[[], Optional[EndRun]]
    when: Optional[Callable[[], bool]] = None
    ignore_errors: bool = False


@dataclass
class StepResult:
    name: str
    status: StepStatus
    error: Optional[str] = None


@dataclass
class RunResult:
    status: RunStatus
    message: str = ""
    steps: List[StepResult] = field(default_factory=list)

    def names(self, status: StepStatus) -> List[str]:
        return [step.name for step in self.steps if step.status == status]


class Workflow:
    """Run steps in order.

    A step whose ``when`` returns False is skipped. A failing step stops the
    run by re-raising its error, unless ``ignore_errors`` is set, in which
    case the failure is logged and recorded as IGNORED. ``when`` is evaluated
    just before the step so it can see facts gathered by earlier steps.
    """

    def __init__(self, name: str, steps: List[Step]) -> None:
        self.name = name
        self.steps = steps
        self.results: List[StepResult] = []

    def run(self) -> RunResult:
        log("INFO", f"PLAY [{self.name}]")
        self.results = []
        for step in self.steps:
            if step.when is not None and not step.when():
                log("DEBUG", f"TASK [{step.name}] skipped")
                self.results.append(StepResult(step.name, StepStatus.SKIPPED))
                continue
            log("INFO", f"TASK [{step.name}]")
            try:
                outcome = step.action()
            except WorkflowError as exc:
                if not step.ignore_errors:
                    self.results.append(StepResult(step.name, StepStatus.FAILED, str(exc)))
                    log("ERROR", f"TASK [{step.name}] failed")
                    raise
                log("WARN", f"TASK [{step.name}] failed, ignoring: {exc}")
                self.results.append(StepResult(step.name, StepStatus.IGNORED, str(exc)))
                continue
            self.results.append(StepResult(step.name, StepStatus.OK))
            if outcome is not None:
                log("WARN", outcome.message)
                return RunResult(outcome.status, outcome.message, list(self.results))
        log("SUCCESS", f"PLAY [{self.name}] complete")
        return RunResult(RunStatus.COMPLETED, steps=list(self.results))
