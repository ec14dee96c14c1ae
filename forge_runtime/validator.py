"""Workflow-aware checks on model output."""

import math
import re
from typing import List, Optional, Tuple

from .models import ValidationCheck, ValidationReport, Workflow

REPAIR_THRESHOLD = 75
NO_REPAIR_NEEDED = "No immediate repair needed."
DEFAULT_MAX_RESPONSE_WORDS = 180

_MAX_WORDS = re.compile(r"max\s+(\d+)\s+words", re.IGNORECASE)
_CHECKLIST = re.compile(r"checklist|assumption", re.IGNORECASE)
_RATIONALE = re.compile(r"why|because|improv", re.IGNORECASE)
_STRUCTURE = re.compile(r"\n\s*[-*\d]|###|\bsection\b", re.IGNORECASE)
_CONSTRAINT_AWARE = re.compile(r"constraint|limit|max|must", re.IGNORECASE)


def word_count(text: str) -> int:
    return len(text.split())


def extract_word_limit(constraints: str) -> Optional[int]:
    """Find a ``max N words`` limit in free-form constraint text."""
    match = _MAX_WORDS.search(constraints or "")
    return int(match.group(1)) if match else None


def score_checks(checks: List[ValidationCheck]) -> int:
    """Percentage of passing checks, rounded half up."""
    if not checks:
        return 0
    passed = sum(1 for c in checks if c.passed)
    return int(math.floor(100 * passed / len(checks) + 0.5))


def validate_output(
    output: str,
    workflow: Workflow,
    constraints: str = "",
    max_response_words: Optional[int] = None,
) -> ValidationReport:
    """
    Score model output against the rules of the workflow that produced it.

    The non-empty check always comes first. Each failing check adds one
    fix suggestion; when everything passes the fixes list holds a single
    "no repair needed" entry.
    """
    text = (output or "").strip()
    words = word_count(text)
    results: List[Tuple[str, bool, str]] = [
        ("Non-empty response", bool(text), "Regenerate: the model returned no text."),
    ]

    if workflow == Workflow.ARTIFACT_PACK:
        limit = extract_word_limit(constraints)
        results.append((
            "Length compliance",
            not limit or words <= limit,
            f"Reduce output to <= {limit} words.",
        ))
        results.append((
            "Checklist present",
            bool(_CHECKLIST.search(text)),
            "Add an assumptions/checklist section.",
        ))

    elif workflow == Workflow.IMPROVE_PROMPT:
        results.append((
            "Includes rationale",
            bool(_RATIONALE.search(text)),
            "Explain why the revised prompt is better.",
        ))
        results.append((
            "Has structured sections",
            bool(_STRUCTURE.search(text)),
            "Organize the output into numbered steps, bullets or ### sections.",
        ))

    elif workflow == Workflow.VALIDATE_SLM:
        budget = max_response_words or DEFAULT_MAX_RESPONSE_WORDS
        results.append((
            "SLM response budget",
            words <= budget,
            f"Shorten response under {budget} words.",
        ))
        results.append((
            "Constraint awareness",
            bool(_CONSTRAINT_AWARE.search(text)),
            "State the constraints and limits the response follows.",
        ))

    checks = [ValidationCheck(name=name, passed=passed) for name, passed, _ in results]
    fixes = [fix for _, passed, fix in results if not passed]
    return ValidationReport(
        checks=checks,
        fixes=fixes or [NO_REPAIR_NEEDED],
        score=score_checks(checks),
    )


class OutputValidator:
    """Validator bound to one run's workflow inputs."""

    def __init__(
        self,
        workflow: Workflow,
        constraints: str = "",
        max_response_words: Optional[int] = None,
    ):
        self.workflow = workflow
        self.constraints = constraints
        self.max_response_words = max_response_words

    def validate(self, output: str) -> ValidationReport:
        return validate_output(output, self.workflow, self.constraints, self.max_response_words)
