"""
Google Sheets Remote Adapter (direct mode)

DESIGN DECISION: The user's own spreadsheet is the remote copy. One
worksheet per entity collection plus Budgets, Categories and Config
sections, so the data stays readable and editable by hand.

Entity worksheets are append-only. Rows are never updated in place nor
physically deleted; the trailing `Deleted` column is the tombstone marker.
A changed entity is written by tombstoning its live row and appending the
new version.

Authentication uses the signed-in user's OAuth access token, passed in
with every call via RemoteCredentials. Nothing here stores secrets.
"""

import json
from contextlib import contextmanager
from typing import Iterator, Optional

import gspread
import requests
import structlog
from google.oauth2.credentials import Credentials
from pydantic import ValidationError

from finfree.config import get_settings
from finfree.config.settings import GoogleSheetsSettings
from finfree.models.ledger import (
    CategoryDefinition,
    MonthlyBudget,
    StartingBalance,
)
from finfree.models.sync import (
    Entity,
    EntityKind,
    RemoteConfig,
    RemoteCredentials,
    RemoteSnapshot,
)
from finfree.services.storage.interface import (
    AuthorizationError,
    RemoteAdapterInterface,
    StorageError,
    TransportError,
)
from finfree.services.storage.retry import transport_retry


logger = structlog.get_logger(__name__)


DELETED_COLUMN = "Deleted"
DELETED_MARK = "true"

# (header, wire field) per entity worksheet; `Deleted` is appended last
EXPENSE_COLUMNS = [
    ("ID", "id"),
    ("Date", "date"),
    ("Time", "time"),
    ("Timestamp", "timestamp"),
    ("Amount", "amount"),
    ("Category", "category"),
    ("Type", "type"),
    ("Payment Method", "paymentMethod"),
    ("Store", "store"),
    ("Notes", "notes"),
    ("Source", "source"),
]

INCOME_COLUMNS = [
    ("ID", "id"),
    ("Date", "date"),
    ("Time", "time"),
    ("Timestamp", "timestamp"),
    ("Amount", "amount"),
    ("Category", "category"),
    ("Payment Method", "paymentMethod"),
    ("Description", "description"),
    ("Notes", "notes"),
]

TRANSFER_COLUMNS = [
    ("ID", "id"),
    ("Date", "date"),
    ("Time", "time"),
    ("Timestamp", "timestamp"),
    ("Amount", "amount"),
    ("From Account", "fromAccountId"),
    ("To Account", "toAccountId"),
    ("Direction", "direction"),
    ("Description", "description"),
    ("Notes", "notes"),
]

ACCOUNT_COLUMNS = [
    ("ID", "id"),
    ("Name", "name"),
    ("Default", "isDefault"),
]

ENTITY_COLUMNS: dict[EntityKind, list[tuple[str, str]]] = {
    EntityKind.EXPENSES: EXPENSE_COLUMNS,
    EntityKind.INCOME: INCOME_COLUMNS,
    EntityKind.TRANSFERS: TRANSFER_COLUMNS,
    EntityKind.ACCOUNTS: ACCOUNT_COLUMNS,
}

BUDGET_HEADERS = ["Month", "Category", "Type", "Amount", "Salary"]
CATEGORY_HEADERS = ["ID", "Name", "Type", "Icon"]
CONFIG_HEADERS = ["Key", "Value"]


def entity_headers(kind: EntityKind) -> list[str]:
    return [header for header, _ in ENTITY_COLUMNS[kind]] + [DELETED_COLUMN]


def entity_to_row(kind: EntityKind, entity: Entity) -> list:
    """Spreadsheet row for an entity, live (empty Deleted cell)."""
    wire = entity.content()
    row = []
    for _, field in ENTITY_COLUMNS[kind]:
        value = wire.get(field)
        if value is None:
            row.append("")
        elif isinstance(value, bool):
            row.append("true" if value else "false")
        else:
            row.append(value)
    row.append("")
    return row


def row_to_entity(kind: EntityKind, row: list) -> Entity:
    """
    Parse a spreadsheet row. Blank cells fall back to model defaults.

    Raises:
        ValidationError: If the row does not describe a valid entity
    """
    data = {}
    for index, (_, field) in enumerate(ENTITY_COLUMNS[kind]):
        cell = row[index] if index < len(row) else ""
        if isinstance(cell, str):
            cell = cell.strip()
        if cell == "" or cell is None:
            continue
        data[field] = cell
    return kind.model.model_validate(data)


def is_deleted(kind: EntityKind, row: list) -> bool:
    index = len(ENTITY_COLUMNS[kind])
    if index >= len(row):
        return False
    return str(row[index]).strip().lower() == DELETED_MARK


def _to_int(value: str) -> int:
    """Spreadsheet numbers may come back as '1500', '1500.0' or '1,500'."""
    text = str(value).replace(",", "").strip()
    return int(float(text)) if text else 0


def _api_error_status(error: gspread.exceptions.APIError) -> Optional[int]:
    code = getattr(error, "code", None)
    if isinstance(code, int) and code > 0:
        return code
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Map gspread/requests failures onto the storage error taxonomy."""
    try:
        yield
    except StorageError:
        raise
    except gspread.exceptions.APIError as e:
        status = _api_error_status(e)
        if status in (401, 403):
            raise AuthorizationError(f"Spreadsheet access denied while trying to {action}: {e}")
        raise TransportError(f"Spreadsheet API error while trying to {action}: {e}")
    except gspread.exceptions.SpreadsheetNotFound as e:
        raise TransportError(f"Spreadsheet not found while trying to {action}: {e}")
    except requests.exceptions.RequestException as e:
        raise TransportError(f"Network error while trying to {action}: {e}")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication with the user's access token and worksheet
    lookup/creation. Re-authorises when the token changes.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._settings = settings or get_settings().google_sheets
        self._client: Optional[gspread.Client] = None
        self._token: Optional[str] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    def connect(self, credentials: RemoteCredentials) -> gspread.Client:
        token = credentials.access_token.get_secret_value()
        if self._client is None or token != self._token:
            self._client = gspread.authorize(Credentials(token=token))
            self._token = token
            self._spreadsheet = None
        return self._client

    def get_spreadsheet(self, credentials: RemoteCredentials) -> gspread.Spreadsheet:
        """Get the user's spreadsheet."""
        client = self.connect(credentials)
        if self._spreadsheet is None or self._spreadsheet.id != credentials.spreadsheet_id:
            self._spreadsheet = client.open_by_key(credentials.spreadsheet_id)
        return self._spreadsheet

    def find_worksheet(
        self,
        credentials: RemoteCredentials,
        title: str,
    ) -> Optional[gspread.Worksheet]:
        """Worksheet by title, or None when older spreadsheets lack it."""
        try:
            return self.get_spreadsheet(credentials).worksheet(title)
        except gspread.WorksheetNotFound:
            return None

    def get_worksheet(
        self,
        credentials: RemoteCredentials,
        title: str,
        headers: list[str],
    ) -> gspread.Worksheet:
        """Get or create a worksheet with its header row."""
        sheet = self.find_worksheet(credentials, title)
        if sheet is None:
            sheet = self.get_spreadsheet(credentials).add_worksheet(
                title=title,
                rows=1000,
                cols=len(headers),
            )
            sheet.append_row(headers)
        return sheet

    def create_spreadsheet(self, credentials: RemoteCredentials) -> gspread.Spreadsheet:
        """Create a new spreadsheet named after the configured title."""
        client = self.connect(credentials)
        self._spreadsheet = client.create(self._settings.spreadsheet_title)
        return self._spreadsheet


class GoogleSheetsRemoteAdapter(RemoteAdapterInterface):
    """
    Direct-mode remote adapter backed by gspread.

    gspread is synchronous; calls run inline, matching the rest of the
    storage layer.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet_name(self, section: str) -> str:
        return getattr(self._client.settings, f"{section}_sheet_name")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read_entities(self, kind: EntityKind, credentials: RemoteCredentials) -> list[Entity]:
        sheet = self._client.find_worksheet(credentials, self._sheet_name(kind.value))
        if sheet is None:
            return []

        entities = []
        for row in sheet.get_all_values()[1:]:
            if not row or not row[0] or is_deleted(kind, row):
                continue
            try:
                entity = row_to_entity(kind, row)
            except ValidationError as e:
                logger.warning("Skipping malformed row", kind=kind.value, row_id=row[0], error=str(e))
                continue
            entities.append(entity.model_copy(update={"synced": True}))
        return entities

    def _read_budgets(self, credentials: RemoteCredentials) -> dict[str, MonthlyBudget]:
        sheet = self._client.find_worksheet(credentials, self._sheet_name("budgets"))
        if sheet is None:
            return {}

        raw: dict[str, dict] = {}
        for row in sheet.get_all_values()[1:]:
            if len(row) < 4 or not row[0] or not row[1]:
                continue
            month = raw.setdefault(
                row[0],
                {"salary": _to_int(row[4]) if len(row) > 4 else 0, "categories": {}},
            )
            month["categories"][row[1]] = {"type": row[2] or "NEED", "amount": _to_int(row[3])}

        budgets = {}
        for key, data in raw.items():
            try:
                budgets[key] = MonthlyBudget.model_validate(data)
            except ValidationError as e:
                logger.warning("Skipping malformed budget month", month=key, error=str(e))
        return budgets

    def _read_categories(self, credentials: RemoteCredentials) -> Optional[list[CategoryDefinition]]:
        sheet = self._client.find_worksheet(credentials, self._sheet_name("categories"))
        if sheet is None:
            return None

        categories = []
        for row in sheet.get_all_values()[1:]:
            if len(row) < 2 or not row[0]:
                continue
            try:
                categories.append(CategoryDefinition(
                    id=row[0],
                    name=row[1],
                    default_type=(row[2] if len(row) > 2 and row[2] else "NEED"),
                    icon=(row[3] if len(row) > 3 and row[3] else "ShoppingBag"),
                ))
            except ValidationError as e:
                logger.warning("Skipping malformed category", category=row[0], error=str(e))
        return categories or None

    def _read_config_values(self, credentials: RemoteCredentials) -> dict[str, str]:
        sheet = self._client.find_worksheet(credentials, self._sheet_name("config"))
        if sheet is None:
            return {}
        return {
            row[0]: row[1] if len(row) > 1 else ""
            for row in sheet.get_all_values()[1:]
            if row and row[0]
        }

    @staticmethod
    def _parse_config(values: dict[str, str]) -> Optional[RemoteConfig]:
        if not values:
            return None

        data = {}
        if values.get("theme"):
            data["theme"] = values["theme"]
        if values.get("balances"):
            try:
                data["balances"] = StartingBalance.model_validate(json.loads(values["balances"]))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Ignoring unreadable remote balances", error=str(e))

        try:
            return RemoteConfig.model_validate(data)
        except ValidationError as e:
            logger.warning("Ignoring unreadable remote config", error=str(e))
            return None

    @staticmethod
    def _legacy_categories(values: dict[str, str]) -> Optional[list[CategoryDefinition]]:
        """Older spreadsheets kept categories as JSON in the Config section."""
        if not values.get("categories"):
            return None
        try:
            return [CategoryDefinition.model_validate(c) for c in json.loads(values["categories"])] or None
        except (json.JSONDecodeError, ValidationError, TypeError):
            return None

    @transport_retry()
    async def fetch_snapshot(self, credentials: RemoteCredentials) -> RemoteSnapshot:
        with translate_errors("fetch snapshot"):
            config_values = self._read_config_values(credentials)
            categories = self._read_categories(credentials)
            if categories is None:
                categories = self._legacy_categories(config_values)

            return RemoteSnapshot(
                expenses=self._read_entities(EntityKind.EXPENSES, credentials),
                income=self._read_entities(EntityKind.INCOME, credentials),
                transfers=self._read_entities(EntityKind.TRANSFERS, credentials),
                accounts=self._read_entities(EntityKind.ACCOUNTS, credentials),
                config=self._parse_config(config_values),
                budgets=self._read_budgets(credentials),
                categories=categories,
            )

    # -------------------------------------------------------------------------
    # Entity writes (append-only)
    # -------------------------------------------------------------------------

    @staticmethod
    def _live_rows(kind: EntityKind, values: list[list]) -> dict[str, list[tuple[int, Optional[Entity]]]]:
        """Live rows by id, with 1-based row numbers (row 1 is the header)."""
        live: dict[str, list[tuple[int, Optional[Entity]]]] = {}
        for row_number, row in enumerate(values[1:], start=2):
            if not row or not row[0] or is_deleted(kind, row):
                continue
            try:
                entity = row_to_entity(kind, row)
            except ValidationError:
                entity = None
            live.setdefault(row[0], []).append((row_number, entity))
        return live

    @transport_retry()
    async def append_entities(
        self,
        kind: EntityKind,
        credentials: RemoteCredentials,
        rows: list[Entity],
    ) -> list[str]:
        if not rows:
            return []

        # Last version wins within one batch
        batch = list({entity.id: entity for entity in rows}.values())

        with translate_errors(f"append {kind.value}"):
            sheet = self._client.get_worksheet(
                credentials, self._sheet_name(kind.value), entity_headers(kind)
            )
            live = self._live_rows(kind, sheet.get_all_values())
            deleted_col = len(ENTITY_COLUMNS[kind]) + 1

            new_rows = []
            acknowledged = []
            for entity in batch:
                existing = live.get(entity.id, [])
                if len(existing) == 1 and existing[0][1] is not None and existing[0][1].same_content(entity):
                    acknowledged.append(entity.id)
                    continue
                for row_number, _ in existing:
                    sheet.update_cell(row_number, deleted_col, DELETED_MARK)
                new_rows.append(entity_to_row(kind, entity))
                acknowledged.append(entity.id)

            if new_rows:
                sheet.append_rows(new_rows, value_input_option="RAW")

        logger.debug(
            "Appended entities",
            kind=kind.value,
            appended=len(new_rows),
            unchanged=len(acknowledged) - len(new_rows),
        )
        return acknowledged

    @transport_retry()
    async def mark_deleted(
        self,
        kind: EntityKind,
        credentials: RemoteCredentials,
        entity_id: str,
    ) -> bool:
        with translate_errors(f"delete {kind.value} {entity_id}"):
            sheet = self._client.find_worksheet(credentials, self._sheet_name(kind.value))
            if sheet is None:
                return False

            rows = self._live_rows(kind, sheet.get_all_values()).get(entity_id, [])
            deleted_col = len(ENTITY_COLUMNS[kind]) + 1
            for row_number, _ in rows:
                sheet.update_cell(row_number, deleted_col, DELETED_MARK)
            return bool(rows)

    # -------------------------------------------------------------------------
    # Config-like sections (clear and rewrite)
    # -------------------------------------------------------------------------

    def _rewrite(
        self,
        credentials: RemoteCredentials,
        section: str,
        headers: list[str],
        rows: list[list],
    ) -> None:
        sheet = self._client.get_worksheet(credentials, self._sheet_name(section), headers)
        sheet.batch_clear([f"A2:{chr(ord('A') + len(headers) - 1)}"])
        if rows:
            sheet.update(range_name="A2", values=rows, value_input_option="RAW")

    @transport_retry()
    async def save_config(self, credentials: RemoteCredentials, config: RemoteConfig) -> None:
        with translate_errors("save config"):
            # Keep whatever the caller did not send
            existing = self._parse_config(self._read_config_values(credentials)) or RemoteConfig()
            theme = config.theme or existing.theme
            balances = config.balances or existing.balances

            rows = []
            if theme is not None:
                rows.append(["theme", theme.value])
            if balances is not None:
                rows.append(["balances", json.dumps(balances.to_wire())])
            self._rewrite(credentials, "config", CONFIG_HEADERS, rows)

    @transport_retry()
    async def save_budgets(
        self,
        credentials: RemoteCredentials,
        budgets: dict[str, MonthlyBudget],
    ) -> None:
        with translate_errors("save budgets"):
            # Months not being saved are preserved
            merged = {**self._read_budgets(credentials), **budgets}
            rows = []
            for key in sorted(merged):
                budget = merged[key]
                for category, allocation in budget.categories.items():
                    rows.append([key, category, allocation.type.value, allocation.amount, budget.salary])
            self._rewrite(credentials, "budgets", BUDGET_HEADERS, rows)

    @transport_retry()
    async def save_categories(
        self,
        credentials: RemoteCredentials,
        categories: list[CategoryDefinition],
    ) -> None:
        with translate_errors("save categories"):
            rows = [
                [category.id, category.name, category.default_type.value, category.icon]
                for category in categories
            ]
            self._rewrite(credentials, "categories", CATEGORY_HEADERS, rows)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    async def create_spreadsheet(self, credentials: RemoteCredentials) -> str:
        """
        Create a spreadsheet laid out for FinFree and return its id.

        `credentials.spreadsheet_id` is ignored; the new id is returned for
        the caller to store in the local config.
        """
        with translate_errors("create spreadsheet"):
            spreadsheet = self._client.create_spreadsheet(credentials)
            as_new = credentials.model_copy(update={"spreadsheet_id": spreadsheet.id})
            for kind in EntityKind:
                self._client.get_worksheet(as_new, self._sheet_name(kind.value), entity_headers(kind))
            self._client.get_worksheet(as_new, self._sheet_name("budgets"), BUDGET_HEADERS)
            self._client.get_worksheet(as_new, self._sheet_name("categories"), CATEGORY_HEADERS)
            self._client.get_worksheet(as_new, self._sheet_name("config"), CONFIG_HEADERS)
            return spreadsheet.id

