"""Validation package."""

from finfree.validation.validator import TransactionRejectedError, TransactionValidator

__all__ = ["TransactionRejectedError", "TransactionValidator"]
