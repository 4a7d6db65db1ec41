# Two-stage packaging pipeline: standardize -> classify
# A failing stage is recorded as an unsuccessful StepRecord and the run continues
# with fallback values (raw prompt after standardize, default classification after classify).
# The model is reached through a ChatFn: the gateway directly, or generate-prompt from the remote worker

import logging
from typing import Optional

from prompt_packager.client import ChatFn
from prompt_packager.prompts import CLASSIFY_SYSTEM, STANDARDIZE_SYSTEM, build_standardize_input
from prompt_packager.state import (
    STEP_CLASSIFY,
    STEP_STANDARDIZE,
    Classification,
    PackagedResult,
    PackagePromptPayload,
    StepRecord,
    snippet,
)
from prompt_packager.validators import parse_classification

logger = logging.getLogger(__name__)


async def standardize(payload: PackagePromptPayload, llm: ChatFn) -> tuple[str, StepRecord]:
    """Stage 1. Returns (text for stage 2, step record).

    On failure the raw prompt is returned unchanged.
    """
    raw_prompt = payload.raw_prompt
    try:
        standardized = await llm(STANDARDIZE_SYSTEM, build_standardize_input(payload))
    except Exception as e:
        logger.warning("Standardize failed: %s", e, extra={"step": STEP_STANDARDIZE})
        return raw_prompt, StepRecord(
            step=STEP_STANDARDIZE,
            input_snippet=snippet(raw_prompt),
            output_snippet=f"Error: {e}",
            success=False,
        )

    logger.info("Standardized prompt", extra={"step": STEP_STANDARDIZE, "chars": len(standardized)})
    return standardized, StepRecord(
        step=STEP_STANDARDIZE,
        input_snippet=snippet(raw_prompt),
        output_snippet=snippet(standardized),
        success=True,
    )


async def classify(text: str, title: str, llm: ChatFn) -> tuple[Classification, StepRecord]:
    """Stage 2. Returns (classification, step record).

    Call errors and unparseable responses keep ``Classification.defaults``.
    """
    defaults = Classification.defaults(title)
    try:
        response = await llm(CLASSIFY_SYSTEM, text)
        classification = parse_classification(response, defaults)
    except Exception as e:
        logger.warning("Classify failed: %s", e, extra={"step": STEP_CLASSIFY})
        return defaults, StepRecord(
            step=STEP_CLASSIFY,
            input_snippet=snippet(text),
            output_snippet=f"Error: {e}",
            success=False,
        )

    logger.info(
        "Classified: [%s] %s",
        ", ".join(classification.tags),
        classification.complexity,
        extra={"step": STEP_CLASSIFY},
    )
    return classification, StepRecord(
        step=STEP_CLASSIFY,
        input_snippet=snippet(text),
        output_snippet=classification.to_json(),
        success=True,
    )


async def package_prompt(
    payload: PackagePromptPayload,
    llm: ChatFn,
    job_id: Optional[str] = None,
) -> PackagedResult:
    """Run both stages sequentially and collect the packaged result."""
    logger.info(
        "Processing submission %s: %r",
        payload.submission_id,
        payload.title,
        extra={"job_id": job_id},
    )

    standardized, standardize_step = await standardize(payload, llm)
    classification, classify_step = await classify(standardized, payload.title, llm)

    return PackagedResult(
        job_id=job_id,
        submission_id=payload.submission_id,
        standardized_prompt_text=standardized,
        summary=classification.summary,
        tags=classification.tags,
        complexity=classification.complexity,
        steps=[standardize_step, classify_step],
    )
