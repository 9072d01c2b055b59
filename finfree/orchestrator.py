"""
Main Orchestrator for FinFree

This module ties together all the components and defines the flows for:
1. Entry CRUD (validate -> store -> audit -> trigger sync)
2. Config saves (store locally -> mirror to the remote copy)
3. Derived views (balances, daily allowance, shortfall warnings)
4. Sync triggers (app start, reconnect, new entry, periodic, manual)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing reaches the store without passing validation
- Local writes never wait on the network
- Every change is audited

Credentials are never held here. They are rebuilt from the local config
(plus the sign-in access token, when there is one) for every remote call.
"""

from datetime import date
from typing import Any, Callable, Optional, Union

from finfree.audit import AuditLogger
from finfree.calculations import (
    DailyAllowance,
    FutureBalanceWarning,
    RunningBalance,
    calculate_daily_allowance,
    calculate_future_balance_warnings,
    calculate_running_balance,
    get_current_month_key,
    get_monthly_expenses,
    get_monthly_income,
    get_net_cash_flow,
    legacy_direction,
    transfer_endpoints,
)
from finfree.config import get_settings
from finfree.models.ledger import (
    BANK_PAYMENT_METHOD,
    CASH_ACCOUNT_ID,
    CASH_PAYMENT_METHOD,
    DEFAULT_BANK_BUCKET,
    FEES_CATEGORY,
    MONTH_KEY_PATTERN,
    SECRET_FIELDS,
    AppConfig,
    BankAccount,
    CategoryDefinition,
    Expense,
    ExpenseType,
    Income,
    MonthlyBudget,
    StartingBalance,
    Theme,
    Transfer,
)
from finfree.models.sync import (
    Entity,
    EntityKind,
    RemoteConfig,
    RemoteCredentials,
    SyncMode,
    SyncReport,
    SyncTrigger,
)
from finfree.services.storage import (
    AuthorizationError,
    GoogleSheetsRemoteAdapter,
    JsonFileLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
    RelayRemoteAdapter,
    RemoteAdapterInterface,
    StorageError,
)
from finfree.sync import SyncReconciler
from finfree.validation import TransactionRejectedError, TransactionValidator


AccessTokenProvider = Callable[[], Optional[str]]


def resolve_sync_mode(config: AppConfig, access_token: Optional[str] = None) -> SyncMode:
    """
    Pick the transport for this device.

    Direct when signed in with a spreadsheet chosen, relay when a relay URL
    and secret are configured, otherwise local-only.
    """
    if access_token and config.spreadsheet_id:
        return SyncMode.DIRECT
    if config.sheets_url and config.sheets_secret:
        return SyncMode.RELAY
    return SyncMode.LOCAL


def build_credentials(
    config: AppConfig,
    access_token: Optional[str] = None,
) -> Optional[RemoteCredentials]:
    """Credentials for the resolved mode, or None when local-only."""
    mode = resolve_sync_mode(config, access_token)
    if mode == SyncMode.DIRECT:
        return RemoteCredentials(
            mode=mode,
            access_token=access_token,
            spreadsheet_id=config.spreadsheet_id,
        )
    if mode == SyncMode.RELAY:
        return RemoteCredentials(
            mode=mode,
            relay_url=config.sheets_url,
            relay_secret=config.sheets_secret,
        )
    return None


def _account_reference(account_id: str) -> str:
    """Reference string for booking an expense against a resolved account."""
    if account_id == CASH_ACCOUNT_ID:
        return CASH_PAYMENT_METHOD
    if account_id == DEFAULT_BANK_BUCKET:
        return BANK_PAYMENT_METHOD
    return account_id


class LedgerService:
    """
    Orchestrates everything the app does with the ledger.

    Local writes complete before any remote work starts. Remote work is
    either scheduled in the background (sync cycles, deletes) or attempted
    once with failures logged (config saves).
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        reconciler: Optional[SyncReconciler] = None,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        access_token_provider: Optional[AccessTokenProvider] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._reconciler = reconciler or SyncReconciler(store, audit_logger=audit_logger)
        self._validator = validator or TransactionValidator(store)
        self._access_token_provider = access_token_provider

    @property
    def store(self) -> LedgerStoreInterface:
        return self._store

    @property
    def reconciler(self) -> SyncReconciler:
        return self._reconciler

    # -------------------------------------------------------------------------
    # Credentials & sync triggers
    # -------------------------------------------------------------------------

    def _access_token(self) -> Optional[str]:
        return self._access_token_provider() if self._access_token_provider else None

    async def sync_mode(self) -> SyncMode:
        config = (await self._store.load()).config
        return resolve_sync_mode(config, self._access_token())

    async def credentials(self) -> Optional[RemoteCredentials]:
        config = (await self._store.load()).config
        return build_credentials(config, self._access_token())

    async def sync(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncReport:
        """
        Run a reconciliation cycle now and wait for it.

        Raises:
            AuthorizationError: The remote rejected the credentials
        """
        return await self._reconciler.sync(await self.credentials(), trigger)

    async def request_sync(self, trigger: SyncTrigger):
        """Schedule a cycle without waiting; dropped if one is in flight."""
        return self._reconciler.request_sync(await self.credentials(), trigger)

    async def on_app_start(self):
        return await self.request_sync(SyncTrigger.APP_START)

    async def on_reconnect(self):
        return await self.request_sync(SyncTrigger.RECONNECT)

    @property
    def needs_reauthentication(self) -> bool:
        return isinstance(self._reconciler.last_error, AuthorizationError)

    # -------------------------------------------------------------------------
    # Entry CRUD
    # -------------------------------------------------------------------------

    async def _add(
        self,
        kind: EntityKind,
        data: Union[dict[str, Any], Entity],
        prepare: Optional[Callable[[Entity], Entity]] = None,
    ) -> Entity:
        state = await self._store.load()
        try:
            entity, _ = await self._validator.build(kind, data, state)
        except TransactionRejectedError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_rejected(kind.value, e.result.issue_dicts())
            raise

        if prepare is not None:
            entity = prepare(entity)
        stored = await self._store.add_entity(entity)
        if self._audit_logger:
            await self._audit_logger.log_entity_created(
                kind.value, stored.id, getattr(stored, "amount", None)
            )
        return stored

    async def add_expense(self, data: Union[dict[str, Any], Expense]) -> Expense:
        """
        Validate and record an expense, then trigger a sync.

        Raises:
            TransactionRejectedError: If validation reported an error
        """
        expense = await self._add(EntityKind.EXPENSES, data)
        await self.request_sync(SyncTrigger.NEW_ENTRY)
        return expense

    async def add_income(self, data: Union[dict[str, Any], Income]) -> Income:
        """Validate and record income, then trigger a sync."""
        income = await self._add(EntityKind.INCOME, data)
        await self.request_sync(SyncTrigger.NEW_ENTRY)
        return income

    async def add_transfer(
        self,
        data: Union[dict[str, Any], Transfer],
        fee: int = 0,
    ) -> tuple[Transfer, Optional[Expense]]:
        """
        Record a transfer, plus a FEES expense on the source account when
        `fee` is positive.

        Cash <-> default bank transfers also get the legacy direction, so
        older readers of the remote copy still understand them.

        Returns:
            (transfer, fee_expense or None)
        """
        def with_legacy_direction(transfer: Transfer) -> Transfer:
            if transfer.direction is None:
                direction = legacy_direction(transfer.from_account_id, transfer.to_account_id)
                if direction is not None:
                    return transfer.model_copy(update={"direction": direction})
            return transfer

        transfer = await self._add(EntityKind.TRANSFERS, data, with_legacy_direction)

        fee_expense = None
        if fee > 0:
            accounts = (await self._store.load()).accounts
            source, _ = transfer_endpoints(transfer, accounts)
            fee_expense = await self._add(EntityKind.EXPENSES, Expense(
                date=transfer.date,
                time=transfer.time,
                amount=fee,
                category=FEES_CATEGORY,
                expense_type=ExpenseType.NEED,
                payment_method=_account_reference(source),
                notes=f"Transfer fee ({transfer.description or transfer.id})",
            ))

        await self.request_sync(SyncTrigger.NEW_ENTRY)
        return transfer, fee_expense

    async def add_account(self, name: str, is_default: bool = False) -> BankAccount:
        account = await self._add(EntityKind.ACCOUNTS, {"name": name, "isDefault": is_default})
        await self.request_sync(SyncTrigger.NEW_ENTRY)
        return account

    async def update_entry(self, kind: EntityKind, entity_id: str, **changes: Any) -> Entity:
        """
        Edit an entry. `changes` use attribute names (e.g. payment_method).

        The edited entry becomes unsynced and is re-pushed by the next cycle.

        Raises:
            NotFoundError: If there is no such entry
            TransactionRejectedError: If the edited entry fails validation
        """
        state = await self._store.load()
        existing = state.find(kind, entity_id)
        if existing is None:
            raise NotFoundError(f"{kind.value} entry not found: {entity_id}")

        edited, _ = await self._validator.build(
            kind,
            existing.model_copy(update={**changes, "id": entity_id}),
            state,
            check_duplicates=False,
        )
        stored = await self._store.update_entity(edited)
        if self._audit_logger:
            await self._audit_logger.log_entity_updated(kind.value, entity_id)
        await self.request_sync(SyncTrigger.NEW_ENTRY)
        return stored

    async def delete_entry(self, kind: EntityKind, entity_id: str) -> None:
        """
        Remove an entry locally right away and send the remote delete in
        the background. An unconfirmed delete is retried by later cycles.

        Raises:
            NotFoundError: If there is no such entry
            ValueError: When asked to delete the cash account
        """
        if kind == EntityKind.ACCOUNTS and entity_id == CASH_ACCOUNT_ID:
            raise ValueError("The cash account cannot be deleted")

        tombstone = await self._store.delete_entity(kind, entity_id)
        if self._audit_logger:
            await self._audit_logger.log_entity_deleted(kind.value, entity_id)
        self._reconciler.request_tombstone(await self.credentials(), tombstone)

    # -------------------------------------------------------------------------
    # Config, budgets, categories
    # -------------------------------------------------------------------------

    async def _mirror(self, section: str, send) -> bool:
        """Push one config-like section to the remote copy; log failures."""
        credentials = await self.credentials()
        adapter: Optional[RemoteAdapterInterface] = self._reconciler.adapter_for(credentials)
        if adapter is None:
            return False
        try:
            await send(adapter, credentials)
            return True
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_remote_save_failed(section, str(e))
            return False

    async def save_budget(self, key: str, budget: MonthlyBudget) -> bool:
        """
        Save one month's budget locally, then mirror it remotely.

        Returns:
            True if the remote copy was updated too
        """
        if not MONTH_KEY_PATTERN.match(key):
            raise ValueError(f"Budget key must be YYYY-MM, got {key!r}")

        config = (await self._store.load()).config
        await self._store.save_config(
            config.model_copy(update={"budgets": {**config.budgets, key: budget}})
        )
        if self._audit_logger:
            await self._audit_logger.log_config_saved(["budgets"])

        return await self._mirror(
            "budgets",
            lambda adapter, credentials: adapter.save_budgets(credentials, {key: budget}),
        )

    async def save_categories(self, categories: list[CategoryDefinition]) -> bool:
        config = (await self._store.load()).config
        await self._store.save_config(config.model_copy(update={"categories": list(categories)}))
        if self._audit_logger:
            await self._audit_logger.log_config_saved(["categories"])

        return await self._mirror(
            "categories",
            lambda adapter, credentials: adapter.save_categories(credentials, list(categories)),
        )

    async def save_preferences(
        self,
        theme: Optional[Theme] = None,
        balances: Optional[StartingBalance] = None,
    ) -> bool:
        """Save theme and/or starting balances locally and remotely."""
        config = (await self._store.load()).config
        update = {}
        if theme is not None:
            update["theme"] = theme
        if balances is not None:
            update["balances"] = balances
        if not update:
            return False

        await self._store.save_config(config.model_copy(update=update))
        if self._audit_logger:
            await self._audit_logger.log_config_saved(sorted(update))

        remote = RemoteConfig(theme=theme, balances=balances)
        return await self._mirror(
            "config",
            lambda adapter, credentials: adapter.save_config(credentials, remote),
        )

    async def save_secrets(self, **secrets: str) -> AppConfig:
        """
        Update device-local secrets (relay URL/secret, spreadsheet id, API
        key). Never mirrored remotely.
        """
        unknown = set(secrets) - set(SECRET_FIELDS)
        if unknown:
            raise ValueError(f"Not a secret field: {', '.join(sorted(unknown))}")

        config = (await self._store.load()).config.model_copy(update=secrets)
        await self._store.save_config(config)
        if self._audit_logger:
            await self._audit_logger.log_config_saved(["secrets"])
        return config

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    async def running_balance(self) -> RunningBalance:
        state = await self._store.load()
        return calculate_running_balance(
            state.config.balances,
            state.income,
            state.expenses,
            state.transfers,
            state.accounts,
        )

    async def daily_allowance(
        self,
        key: Optional[str] = None,
        today: Optional[date] = None,
    ) -> DailyAllowance:
        state = await self._store.load()
        key = key or get_current_month_key(today)
        return calculate_daily_allowance(state.config.budgets.get(key), state.expenses, key, today)

    async def future_warnings(self, today: Optional[date] = None) -> dict[str, FutureBalanceWarning]:
        state = await self._store.load()
        return calculate_future_balance_warnings(
            state.config.balances,
            state.income,
            state.expenses,
            state.transfers,
            state.accounts,
            today,
        )

    async def monthly_summary(self, key: Optional[str] = None) -> dict[str, Any]:
        """Income, expenses and net cash flow for one month."""
        state = await self._store.load()
        key = key or get_current_month_key()
        return {
            "month": key,
            "income": get_monthly_income(state.income, key),
            "expenses": get_monthly_expenses(state.expenses, key),
            "net": get_net_cash_flow(state.income, state.expenses, key),
        }


def create_app_components(
    use_remote: bool = True,
    data_path: Optional[str] = None,
    access_token_provider: Optional[AccessTokenProvider] = None,
) -> tuple[LedgerService, SyncReconciler, LedgerStoreInterface]:
    """
    Factory function to create all application components.

    Args:
        use_remote: Whether to wire the remote adapters.
                    Set to False for a purely local ledger.
        data_path: Ledger file; defaults to the configured data file.
        access_token_provider: Returns the current sign-in token (direct mode).

    Returns:
        (ledger_service, reconciler, store)
    """
    settings = get_settings()
    audit_logger = AuditLogger()
    store = JsonFileLedgerStore(data_path or settings.app.data_path)

    adapters: dict[SyncMode, RemoteAdapterInterface] = {}
    if use_remote:
        adapters[SyncMode.DIRECT] = GoogleSheetsRemoteAdapter()
        adapters[SyncMode.RELAY] = RelayRemoteAdapter()

    reconciler = SyncReconciler(store, adapters, audit_logger)
    service = LedgerService(
        store,
        reconciler=reconciler,
        validator=TransactionValidator(store),
        audit_logger=audit_logger,
        access_token_provider=access_token_provider,
    )
    return service, reconciler, store
