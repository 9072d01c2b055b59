"""
Validation Result Models

Produced by the two-stage TransactionValidator. A result with any
error-severity issue means the entry must not reach the store.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from finfree.models.ledger import utc_now


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unknown_account')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields, amount > 0)
    Stage 2: Semantic validation (account references, duplicates, sanity)
    """

    kind: str = Field(
        ...,
        description="Collection the entry belongs to"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Id of the entry, when schema validation got that far"
    )
    validated_at: datetime = Field(default_factory=utc_now)

    schema_valid: bool = False
    semantic_valid: bool = False
    is_valid: bool = False

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    def issue_dicts(self) -> list[dict]:
        return [issue.model_dump() for issue in self.issues]
