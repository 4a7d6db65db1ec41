# Job payload and pipeline result definitions
# Typed payloads per job type, per-step audit records, and the packaged result

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Job type handled by the packaging pipeline
JOB_TYPE_PACKAGE_PROMPT = "package_prompt"

# Step names recorded in job_runs
STEP_STANDARDIZE = "standardize"
STEP_CLASSIFY = "classify"

Complexity = Literal["simple", "medium", "complex", "advanced"]
VALID_COMPLEXITIES: tuple[str, ...] = ("simple", "medium", "complex", "advanced")

DEFAULT_TAGS: tuple[str, ...] = ("unprocessed",)
DEFAULT_COMPLEXITY: Complexity = "medium"

# Snippet length stored in job_runs for step input/output
SNIPPET_LENGTH = 200


class UnknownJobTypeError(ValueError):
    """Raised when a job's type has no payload model."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unsupported job type: {job_type!r}")


class InvalidPayloadError(ValueError):
    """Raised when payload_json does not fit the model for its job type."""


class PackagePromptPayload(BaseModel):
    """payload_json for a ``package_prompt`` job.

    Every field is optional: missing values read as empty strings/lists,
    the same way the submission form leaves them blank.
    """

    model_config = ConfigDict(extra="ignore")

    submission_id: Optional[str] = None
    title: str = ""
    raw_prompt: str = ""
    problem: str = ""
    scope: str = ""
    integrations: list[str] = Field(default_factory=list)


# job.type -> payload model (extend here when a new job type is added)
PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    JOB_TYPE_PACKAGE_PROMPT: PackagePromptPayload,
}


def parse_payload(job_type: str, payload_json: Any) -> PackagePromptPayload:
    """Resolve a job's free-form payload into its typed model.

    Raises:
        UnknownJobTypeError: job_type has no registered model.
        InvalidPayloadError: payload_json is not an object or fails validation.
    """
    model = PAYLOAD_MODELS.get(job_type)
    if model is None:
        raise UnknownJobTypeError(job_type)

    if payload_json is None:
        payload_json = {}
    if not isinstance(payload_json, dict):
        raise InvalidPayloadError(
            f"payload_json for {job_type!r} must be an object, got {type(payload_json).__name__}"
        )

    # JSON null fields fall back to model defaults
    cleaned = {k: v for k, v in payload_json.items() if v is not None}
    try:
        return model.model_validate(cleaned)
    except ValidationError as e:
        raise InvalidPayloadError(f"Invalid payload for {job_type!r}: {e}") from e


@dataclass
class StepRecord:
    """One AI call made while processing a job (a job_runs row)."""

    step: str
    input_snippet: str
    output_snippet: str
    success: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Classification:
    """Stage-2 output"""

    summary: str
    tags: list[str]
    complexity: str

    @classmethod
    def defaults(cls, title: str) -> "Classification":
        """Values kept when classification fails."""
        return cls(
            summary=f"Submission: {title}",
            tags=list(DEFAULT_TAGS),
            complexity=DEFAULT_COMPLEXITY,
        )

    def to_json(self) -> str:
        return json.dumps(
            {"summary": self.summary, "tags": self.tags, "complexity": self.complexity},
            ensure_ascii=False,
        )


@dataclass
class PackagedResult:
    """Everything produced by one run of the packaging pipeline."""

    job_id: Optional[str]
    submission_id: Optional[str]
    standardized_prompt_text: str
    summary: str
    tags: list[str]
    complexity: str
    steps: list[StepRecord] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when at least one stage failed and fallback values were used."""
        return any(not s.success for s in self.steps)

    def to_report(self) -> dict[str, Any]:
        """Body sent to the jobs-report function."""
        return {
            "job_id": self.job_id,
            "standardized_prompt_text": self.standardized_prompt_text,
            "summary": self.summary,
            "tags": self.tags,
            "complexity": self.complexity,
            "steps": [s.to_dict() for s in self.steps],
        }


def snippet(text: str | None) -> str:
    """First SNIPPET_LENGTH characters of text."""
    return (text or "")[:SNIPPET_LENGTH]
