"""Step results returned by the release pipeline.

Each stage reports a :class:`StepResult` instead of raising, so callers
can decide on retries and reporting without catching exceptions themselves.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

import pydantic

from ijrelease.utils.exceptions import PublishError, ReleaseError

LOAD = "load"
COMPILE = "compile"
VALIDATE = "validate"
PATCH = "patch"
PACKAGE = "package"
SIGN = "sign"
PUBLISH = "publish"


class StepOutcome(str, Enum):
    """How a pipeline stage ended."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


class StepError(pydantic.BaseModel):
    """Structured error payload within a StepResult."""

    model_config = pydantic.ConfigDict(frozen=True)

    code: str
    message: str
    details: Dict[str, Any] = pydantic.Field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: ReleaseError) -> StepError:
        details = {key: value for key, value in error.details.items() if value is not None}
        return cls(code=type(error).__name__, message=str(error), details=details)


class StepResult(pydantic.BaseModel):
    """Result of one pipeline stage.

    Attributes:
        stage: Stage name (``load``, ``validate``, ``sign``, ...)
        outcome: How the stage ended
        data: Stage specific payload on success
        error: Structured error when the stage failed
    """

    model_config = pydantic.ConfigDict(frozen=True, arbitrary_types_allowed=True)

    stage: str
    outcome: StepOutcome
    data: Any = None
    error: Optional[StepError] = None

    @property
    def ok(self) -> bool:
        return self.outcome is StepOutcome.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.outcome is StepOutcome.RETRYABLE_FAILURE

    @classmethod
    def success(cls, stage: str, data: Any = None) -> StepResult:
        return cls(stage=stage, outcome=StepOutcome.SUCCESS, data=data)

    @classmethod
    def failure(cls, stage: str, error: ReleaseError) -> StepResult:
        """Build a failed result, retryable only for transient publish errors."""
        retryable = isinstance(error, PublishError) and error.retryable
        return cls(
            stage=stage,
            outcome=StepOutcome.RETRYABLE_FAILURE if retryable else StepOutcome.FATAL_FAILURE,
            error=StepError.from_exception(error),
        )

    def summary(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"stage": self.stage, "outcome": self.outcome.value}
        if self.error is not None:
            result["error"] = self.error.model_dump()
        return result


class PipelineReport(pydantic.BaseModel):
    """Results of a pipeline run, in stage order.

    Attributes:
        steps: Results of the stages that ran
        signed_artifact: The signed artifact, when signing succeeded
        publish_result: The publish result, when publishing succeeded
    """

    model_config = pydantic.ConfigDict(arbitrary_types_allowed=True)

    steps: List[StepResult] = pydantic.Field(default_factory=list)
    signed_artifact: Optional[Any] = None
    publish_result: Optional[Any] = None

    def add(self, step: StepResult) -> StepResult:
        """Record a stage result, keeping the signed artifact and publish result."""
        self.steps.append(step)
        if step.ok and step.stage == SIGN:
            self.signed_artifact = step.data
        elif step.ok and step.stage == PUBLISH:
            self.publish_result = step.data
        return step

    @property
    def ok(self) -> bool:
        return bool(self.steps) and all(step.ok for step in self.steps)

    @property
    def failed_step(self) -> Optional[StepResult]:
        for step in self.steps:
            if not step.ok:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "steps": [step.summary() for step in self.steps],
            "signed_artifact": str(self.signed_artifact.path) if self.signed_artifact else None,
            "publish_result": self.publish_result.model_dump() if self.publish_result else None,
        }
