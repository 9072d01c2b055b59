"""
Two-Stage Validation Pipeline

DESIGN DECISION: Entries are validated in two distinct stages before they
reach the store:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and required fields (pydantic)
- amount > 0, date/time formats, transfer endpoints present
- Any failure here is an error: the entry is rejected

STAGE 2 - SEMANTIC VALIDATION:
- Account references that no longer exist (warning: falls back to the
  default bank account)
- Transfers whose two legs resolve to the same account (error)
- Unknown expense categories, unusually large amounts (warnings)
- Potential duplicates of existing entries (warning, needs the store)

IMPORTANT: Validation NEVER silently fixes issues.
Warnings are reported; only errors block the entry.
"""

from typing import Any, Optional, Union

from pydantic import ValidationError

from finfree.calculations.accounts import (
    default_bank_account_id,
    resolve_account_ref,
    transfer_endpoints,
)
from finfree.config import get_settings
from finfree.models.ledger import (
    BANK_PAYMENT_METHOD,
    CARD_PAYMENT_METHOD,
    CASH_ACCOUNT_ID,
    CASH_PAYMENT_METHOD,
    DEFAULT_BANK_BUCKET,
    Expense,
    Income,
    Transfer,
)
from finfree.models.sync import Entity, EntityKind, LedgerState
from finfree.models.validation import ValidationIssue, ValidationResult
from finfree.services.storage.interface import LedgerStoreInterface


_SYMBOLIC_REFERENCES = {
    CASH_PAYMENT_METHOD.lower(),
    CARD_PAYMENT_METHOD.lower(),
    BANK_PAYMENT_METHOD.lower(),
    CASH_ACCOUNT_ID,
    DEFAULT_BANK_BUCKET,
}

_ERROR_TYPES = {
    "missing": "missing",
    "greater_than": "invalid_value",
    "greater_than_equal": "invalid_value",
    "string_pattern_mismatch": "invalid_format",
    "date_from_datetime_parsing": "invalid_format",
    "date_parsing": "invalid_format",
    "enum": "invalid_value",
}


class TransactionRejectedError(Exception):
    """An entry failed validation and was not stored."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(issue.message for issue in result.errors) or "invalid entry"
        super().__init__(f"{result.kind} entry rejected: {messages}")


class TransactionValidator:
    """
    Validates ledger entries through a two-stage pipeline.

    Stage 1: Schema validation (no store needed)
    Stage 2: Semantic validation (uses the current ledger state if available)
    """

    def __init__(self, store: Optional[LedgerStoreInterface] = None):
        """
        Initialize validator.

        Args:
            store: Local store used for account, category and duplicate checks.
                   If None, only the state passed to validate() is used.
        """
        self._store = store
        self._settings = get_settings().app

    def _validate_schema(
        self,
        kind: EntityKind,
        data: Union[dict[str, Any], Entity],
    ) -> tuple[Optional[Entity], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (entity or None, list_of_issues)
        """
        if isinstance(data, kind.model):
            data = data.model_dump(by_alias=True)

        try:
            return kind.model.model_validate(data), []
        except ValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "entry"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type=_ERROR_TYPES.get(error["type"], error["type"]),
                    message=f"{field}: {error['msg']}" if field != "entry" else error["msg"],
                    severity="error",
                ))
            return None, issues

    def _validate_semantic(
        self,
        kind: EntityKind,
        entity: Entity,
        state: LedgerState,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        accounts = state.accounts
        known_ids = {a.id for a in accounts}

        if isinstance(entity, (Expense, Income)):
            reference = entity.payment_method
            if reference.lower() not in _SYMBOLIC_REFERENCES and reference not in known_ids:
                issues.append(ValidationIssue(
                    field="paymentMethod",
                    issue_type="unknown_account",
                    message=f"Account '{reference}' does not exist",
                    severity="warning",
                    suggested_fix=(
                        f"It will be booked to the default account "
                        f"({default_bank_account_id(accounts)})"
                    ),
                ))

        if isinstance(entity, Expense):
            category_ids = {c.id for c in state.config.categories}
            if category_ids and entity.category not in category_ids:
                issues.append(ValidationIssue(
                    field="category",
                    issue_type="unknown_category",
                    message=f"Category '{entity.category}' is not one of your categories",
                    severity="warning",
                    suggested_fix="Add the category in settings or pick an existing one",
                ))

        if isinstance(entity, Transfer):
            for field, account_id in (
                ("fromAccountId", entity.from_account_id),
                ("toAccountId", entity.to_account_id),
            ):
                if account_id and account_id != CASH_ACCOUNT_ID and account_id not in known_ids:
                    issues.append(ValidationIssue(
                        field=field,
                        issue_type="unknown_account",
                        message=f"Account '{account_id}' does not exist",
                        severity="warning",
                        suggested_fix="It will be booked to the default account",
                    ))

            source, destination = transfer_endpoints(entity, accounts)
            if source == destination:
                issues.append(ValidationIssue(
                    field="toAccountId",
                    issue_type="same_account",
                    message="Source and destination resolve to the same account",
                    severity="error",
                    suggested_fix="Pick two different accounts",
                ))

        if kind != EntityKind.ACCOUNTS and entity.amount > self._settings.max_transaction_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({entity.amount:,}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        if kind == EntityKind.ACCOUNTS:
            names = {a.name.casefold() for a in accounts if a.id != entity.id}
            if entity.name.casefold() in names:
                issues.append(ValidationIssue(
                    field="name",
                    issue_type="duplicate_name",
                    message=f"Another account is already called '{entity.name}'",
                    severity="warning",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _check_duplicates(
        self,
        kind: EntityKind,
        entity: Entity,
        state: LedgerState,
    ) -> list[ValidationIssue]:
        """Flag an existing entry with the same date, amount and account."""
        if kind == EntityKind.ACCOUNTS:
            return []

        def signature(item) -> tuple:
            if isinstance(item, Transfer):
                return (item.date, item.amount, transfer_endpoints(item, state.accounts))
            account = resolve_account_ref(item.payment_method, state.accounts)
            return (item.date, item.amount, account, getattr(item, "category", None))

        wanted = signature(entity)
        for existing in state.collection(kind):
            if existing.id != entity.id and signature(existing) == wanted:
                return [ValidationIssue(
                    field="duplicate",
                    issue_type="potential_duplicate",
                    message=(
                        f"A {kind.value} entry of {entity.amount:,} on "
                        f"{entity.date} already exists"
                    ),
                    severity="warning",
                    suggested_fix="Please verify this isn't a duplicate entry",
                )]
        return []

    async def _run(
        self,
        kind: EntityKind,
        data: Union[dict[str, Any], Entity],
        state: Optional[LedgerState],
        check_duplicates: bool,
    ) -> tuple[Optional[Entity], ValidationResult]:
        all_issues = []

        # Stage 1: Schema validation
        entity, schema_issues = self._validate_schema(kind, data)
        all_issues.extend(schema_issues)
        schema_valid = entity is not None

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            if state is None:
                state = await self._store.load() if self._store else LedgerState()
            semantic_valid, semantic_issues = self._validate_semantic(kind, entity, state)
            all_issues.extend(semantic_issues)
            if check_duplicates:
                all_issues.extend(self._check_duplicates(kind, entity, state))

        result = ValidationResult(
            kind=kind.value,
            entity_id=entity.id if entity is not None else None,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=[issue.message for issue in all_issues if issue.severity == "warning"],
        )
        return entity, result

    async def validate(
        self,
        kind: EntityKind,
        data: Union[dict[str, Any], Entity],
        state: Optional[LedgerState] = None,
        check_duplicates: bool = True,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            kind: Collection the entry is meant for
            data: Raw field values (wire or attribute names) or a model
            state: Ledger to check against; loaded from the store if omitted
            check_duplicates: Whether to look for similar existing entries

        Returns:
            ValidationResult with all issues found
        """
        _, result = await self._run(kind, data, state, check_duplicates)
        return result

    async def build(
        self,
        kind: EntityKind,
        data: Union[dict[str, Any], Entity],
        state: Optional[LedgerState] = None,
        check_duplicates: bool = True,
    ) -> tuple[Entity, ValidationResult]:
        """
        Validate and return the entity ready to store.

        Raises:
            TransactionRejectedError: If any stage reported an error
        """
        entity, result = await self._run(kind, data, state, check_duplicates)
        if entity is None or not result.is_valid:
            raise TransactionRejectedError(result)
        return entity, result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Short summary of a validation result for display."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []
        errors = result.errors
        if errors:
            lines.append("This entry can't be saved:")
            lines.extend(f"  - {issue.message}" for issue in errors)
        if result.warnings:
            lines.append("Please double-check:")
            lines.extend(f"  - {warning}" for warning in result.warnings)
        return "\n".join(lines)
