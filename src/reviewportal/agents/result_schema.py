"""Review output artifact schema validation and parsing for Review Portal.

The review agent writes ``review_comments.json`` into the workspace. This
module defines Pydantic models for that artifact and parsing helpers that
tolerate the JSON being wrapped in a markdown code block.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from reviewportal.errors import ReviewOutputError

VALID_VERDICTS = {"approve", "request_changes", "comment"}


class ReviewComment(BaseModel):
    """One inline comment on a changed file.

    Attributes:
        path: File path relative to the repository root
        start_line: First line the comment covers
        end_line: Last line the comment covers
        severity: Severity tag (e.g. HIGH, MEDIUM, LOW)
        category: Category tag (e.g. security, style)
        body: Comment text
    """

    path: str = Field(..., min_length=1)
    start_line: int = Field(..., ge=1)
    end_line: int | None = Field(None, ge=1)
    severity: str = Field(default="MEDIUM")
    category: str = Field(default="general")
    body: str = Field(...)

    @model_validator(mode="after")
    def default_end_line(self) -> ReviewComment:
        """Single-line comments may omit end_line."""
        if self.end_line is None or self.end_line < self.start_line:
            self.end_line = self.start_line
        return self

    @property
    def is_multiline(self) -> bool:
        return self.end_line != self.start_line


class ReviewOutput(BaseModel):
    """Complete review artifact for one pull request.

    Attributes:
        pr_number: Pull request the review is for
        repository: "owner/repo"
        verdict: approve, request_changes or comment
        overall_summary: Review body posted alongside inline comments
        comments: Inline comments
    """

    pr_number: int | None = None
    repository: str | None = None
    verdict: str = Field(...)
    overall_summary: str = Field(default="")
    comments: list[ReviewComment] = Field(default_factory=list)

    @field_validator("verdict")
    @classmethod
    def validate_verdict(cls, v: str) -> str:
        """Validate verdict is recognized.

        Args:
            v: Verdict string to validate

        Returns:
            Lowercase verdict string

        Raises:
            ValueError: If verdict is not recognized
        """
        v_lower = v.strip().lower()
        if v_lower not in VALID_VERDICTS:
            raise ValueError(f"Invalid verdict: {v}. Must be one of {VALID_VERDICTS}")
        return v_lower


def parse_review_output(raw_output: str) -> ReviewOutput:
    """Parse and validate a review artifact.

    Args:
        raw_output: File content written by the agent

    Returns:
        Validated ReviewOutput instance

    Raises:
        ReviewOutputError: If no JSON object can be extracted or it does not
            match the schema
    """
    json_str = _extract_json(raw_output)
    if json_str is None:
        raise ReviewOutputError("No JSON object found in review output")

    try:
        data: Any = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ReviewOutputError(f"Invalid JSON in review output: {e}") from e

    try:
        return ReviewOutput.model_validate(data)
    except ValidationError as e:
        raise ReviewOutputError(f"Review output does not match schema: {e}") from e


def parse_review_output_safe(raw_output: str | None) -> ReviewOutput | None:
    """Parse a review artifact, returning None instead of raising."""
    if not raw_output:
        return None
    try:
        return parse_review_output(raw_output)
    except ReviewOutputError:
        return None


def load_review_output(path: Path) -> tuple[ReviewOutput, str]:
    """Read and parse the artifact at ``path``.

    Returns:
        The parsed output and the raw file content.

    Raises:
        ReviewOutputError: If the file is missing, unreadable or invalid.
    """
    if not path.is_file():
        raise ReviewOutputError(f"Review output file not found: {path.name}")
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ReviewOutputError(f"Could not read review output: {e}") from e
    return parse_review_output(raw), raw


def _extract_json(text: str) -> str | None:
    """Extract a JSON object from text that may contain a markdown fence."""
    stripped = text.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        return stripped

    fence_match = re.search(r"```(?:json)?\s*\n(.*?)\n```", text, re.DOTALL | re.IGNORECASE)
    if fence_match:
        candidate = fence_match.group(1).strip()
        if candidate.startswith("{"):
            return candidate

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return None
