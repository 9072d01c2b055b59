"""
Account Reference Resolution

Transactions name their account with a free-form string: "Cash", "Card",
"Bank", a bank account id, or (for old transfers) a legacy direction.
Accounts get deleted while old transactions keep pointing at them.

DESIGN DECISION: one resolver returns a guaranteed-valid account id for any
reference. Anything it cannot place lands in the default bank bucket; nothing
is ever dropped and no caller sees an unknown id.
"""

from typing import Iterable, Optional

from finfree.models.ledger import (
    BANK_PAYMENT_METHOD,
    CARD_PAYMENT_METHOD,
    CASH_ACCOUNT_ID,
    DEFAULT_BANK_BUCKET,
    BankAccount,
    Transfer,
    TransferDirection,
)


def default_bank_account_id(accounts: Iterable[BankAccount]) -> str:
    """
    The bucket that receives card/bank payments and unresolvable references.

    The account flagged default, else the first account, else the synthetic
    `bank_default` bucket when no bank accounts are configured.
    """
    accounts = list(accounts)
    for account in accounts:
        if account.is_default:
            return account.id
    if accounts:
        return accounts[0].id
    return DEFAULT_BANK_BUCKET


def ledger_account_ids(accounts: Iterable[BankAccount]) -> list[str]:
    """Cash first, then every bank bucket a balance is kept for."""
    accounts = list(accounts)
    bank_ids = [a.id for a in accounts] or [DEFAULT_BANK_BUCKET]
    return [CASH_ACCOUNT_ID, *bank_ids]


def resolve_account_ref(reference: Optional[str], accounts: Iterable[BankAccount]) -> str:
    """
    Resolve an account reference to an account id that is guaranteed to exist.

    Args:
        reference: "Cash"/"cash", "Card", "Bank", "bank_default" or a bank
            account id; None or blank is treated as cash
        accounts: the known bank accounts

    Returns:
        "cash", a known bank account id, or the default bank bucket
    """
    accounts = list(accounts)
    ref = (reference or "").strip()

    if not ref or ref.lower() == CASH_ACCOUNT_ID:
        return CASH_ACCOUNT_ID
    if ref in (CARD_PAYMENT_METHOD, BANK_PAYMENT_METHOD, DEFAULT_BANK_BUCKET):
        return default_bank_account_id(accounts)
    if any(a.id == ref for a in accounts):
        return ref
    return default_bank_account_id(accounts)


def transfer_endpoints(transfer: Transfer, accounts: Iterable[BankAccount]) -> tuple[str, str]:
    """
    Resolve a transfer's (source, destination) account ids.

    Explicit ids win; otherwise the legacy direction is translated to
    cash and the default bank bucket.
    """
    accounts = list(accounts)
    if transfer.from_account_id and transfer.to_account_id:
        from_ref, to_ref = transfer.from_account_id, transfer.to_account_id
    elif transfer.direction == TransferDirection.BANK_TO_CASH:
        from_ref, to_ref = DEFAULT_BANK_BUCKET, CASH_ACCOUNT_ID
    else:
        from_ref, to_ref = CASH_ACCOUNT_ID, DEFAULT_BANK_BUCKET

    return resolve_account_ref(from_ref, accounts), resolve_account_ref(to_ref, accounts)


def legacy_direction(from_account_id: str, to_account_id: str) -> Optional[TransferDirection]:
    """Legacy direction for cash<->bank transfers; bank-to-bank has none."""
    if from_account_id == CASH_ACCOUNT_ID and to_account_id != CASH_ACCOUNT_ID:
        return TransferDirection.CASH_TO_BANK
    if from_account_id != CASH_ACCOUNT_ID and to_account_id == CASH_ACCOUNT_ID:
        return TransferDirection.BANK_TO_CASH
    return None


def account_names(accounts: Iterable[BankAccount]) -> dict[str, str]:
    names = {CASH_ACCOUNT_ID: "Cash", DEFAULT_BANK_BUCKET: "Bank"}
    names.update({a.id: a.name for a in accounts})
    return names


def normalize_default_account(accounts: Iterable[BankAccount]) -> list[BankAccount]:
    """
    Enforce "exactly one default" over a non-empty account list.

    Keeps the first account already flagged default (or promotes the first
    account). Accounts whose flag changes are marked unsynced so the
    correction reaches the remote copy.
    """
    accounts = list(accounts)
    if not accounts:
        return accounts

    keep = default_bank_account_id(accounts)
    result = []
    for account in accounts:
        should_be_default = account.id == keep
        if account.is_default != should_be_default:
            account = account.model_copy(
                update={"is_default": should_be_default, "synced": False}
            )
        result.append(account)
    return result
