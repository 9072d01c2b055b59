"""
Relay Remote Adapter (relay mode)

Talks to a small script deployed next to the user's spreadsheet. The
relay owns the sheet access; this side only knows its URL and a shared
secret, both taken from the local config and passed in per call.

Protocol:
- GET  <url>?type=all&secret=<secret>
       -> {"success": true, "data": {expenses, income, transfers, accounts,
                                       config, budgets, categories}}
- POST <url> {"type": "append",     "secret", "kind", "rows"}
       -> {"success": true, "acknowledged": [ids]}
- POST <url> {"type": "delete",     "secret", "kind", "id"}
       -> {"success": true, "deleted": bool}
- POST <url> {"type": "config",     "secret", "config"}
- POST <url> {"type": "budgets",    "secret", "budgets"}
- POST <url> {"type": "categories", "secret", "categories"}

Any request may answer {"success": false, "error": "..."}; "Unauthorized"
means the secret was rejected.

The relay filters tombstoned rows out of snapshots and applies the same
append semantics as the direct adapter (identical row skipped, changed
row superseded).
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError

from finfree.config import get_settings
from finfree.models.ledger import CategoryDefinition, MonthlyBudget
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
    TransportError,
)
from finfree.services.storage.retry import transport_retry


logger = structlog.get_logger(__name__)

UNAUTHORIZED = "Unauthorized"


class RelayRemoteAdapter(RemoteAdapterInterface):
    """
    Relay-mode remote adapter over httpx.

    Args:
        timeout: HTTP timeout in seconds (defaults to RELAY_TIMEOUT_SECONDS)
        client: pre-built AsyncClient, mainly for tests
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout if timeout is not None else get_settings().relay.timeout_seconds
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """HTTP client (lazy init)."""
        if self._client is None:
            # Script deployments answer through a redirect
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _secret(credentials: RemoteCredentials) -> str:
        return credentials.relay_secret.get_secret_value()

    async def _request(
        self,
        method: str,
        credentials: RemoteCredentials,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Send one request and unwrap the relay envelope.

        Raises:
            AuthorizationError: HTTP 401/403 or an "Unauthorized" body
            TransportError: network failure, other HTTP errors, bad bodies
        """
        client = await self._get_client()
        try:
            if method == "GET":
                response = await client.get(credentials.relay_url, params=params)
            else:
                response = await client.post(credentials.relay_url, json=body)
        except httpx.HTTPError as e:
            raise TransportError(f"Relay unreachable: {e}")

        if response.status_code in (401, 403):
            raise AuthorizationError(f"Relay rejected the request: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise TransportError(f"Relay error: HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"Relay returned a non-JSON body: {e}")
        if not isinstance(payload, dict):
            raise TransportError("Relay returned an unexpected body")

        if not payload.get("success", False):
            error = str(payload.get("error") or "unknown error")
            if error == UNAUTHORIZED:
                raise AuthorizationError("Relay rejected the shared secret")
            raise TransportError(f"Relay reported failure: {error}")

        return payload

    async def _post(self, credentials: RemoteCredentials, request_type: str, **fields: Any) -> dict[str, Any]:
        body = {"type": request_type, "secret": self._secret(credentials), **fields}
        return await self._request("POST", credentials, body=body)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_rows(kind: EntityKind, rows: Any) -> list[Entity]:
        entities = []
        for row in rows or []:
            try:
                entity = kind.model.model_validate(row)
            except ValidationError as e:
                logger.warning("Skipping malformed relay row", kind=kind.value, error=str(e))
                continue
            entities.append(entity.model_copy(update={"synced": True}))
        return entities

    @staticmethod
    def _parse_budgets(raw: Any) -> dict[str, MonthlyBudget]:
        budgets = {}
        for key, value in (raw or {}).items():
            try:
                budgets[key] = MonthlyBudget.model_validate(value)
            except ValidationError as e:
                logger.warning("Skipping malformed relay budget", month=key, error=str(e))
        return budgets

    @staticmethod
    def _parse_categories(raw: Any) -> Optional[list[CategoryDefinition]]:
        if not raw:
            return None
        try:
            return [CategoryDefinition.model_validate(c) for c in raw]
        except ValidationError as e:
            logger.warning("Ignoring malformed relay categories", error=str(e))
            return None

    @staticmethod
    def _parse_config(raw: Any) -> Optional[RemoteConfig]:
        # RemoteConfig has no secret fields; anything else in `raw` is ignored
        if not raw:
            return None
        try:
            return RemoteConfig.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed relay config", error=str(e))
            return None

    @transport_retry()
    async def fetch_snapshot(self, credentials: RemoteCredentials) -> RemoteSnapshot:
        payload = await self._request(
            "GET",
            credentials,
            params={"type": "all", "secret": self._secret(credentials)},
        )
        data = payload.get("data") or {}

        return RemoteSnapshot(
            expenses=self._parse_rows(EntityKind.EXPENSES, data.get("expenses")),
            income=self._parse_rows(EntityKind.INCOME, data.get("income")),
            transfers=self._parse_rows(EntityKind.TRANSFERS, data.get("transfers")),
            accounts=self._parse_rows(EntityKind.ACCOUNTS, data.get("accounts")),
            config=self._parse_config(data.get("config")),
            budgets=self._parse_budgets(data.get("budgets")),
            categories=self._parse_categories(data.get("categories")),
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    @transport_retry()
    async def append_entities(
        self,
        kind: EntityKind,
        credentials: RemoteCredentials,
        rows: list[Entity],
    ) -> list[str]:
        if not rows:
            return []

        payload = await self._post(
            credentials,
            "append",
            kind=kind.value,
            rows=[entity.content() for entity in rows],
        )
        acknowledged = payload.get("acknowledged")
        if acknowledged is None:
            # Older relays only report counts; success covers the whole batch
            return [entity.id for entity in rows]
        sent = {entity.id for entity in rows}
        return [str(entity_id) for entity_id in acknowledged if str(entity_id) in sent]

    @transport_retry()
    async def mark_deleted(
        self,
        kind: EntityKind,
        credentials: RemoteCredentials,
        entity_id: str,
    ) -> bool:
        payload = await self._post(credentials, "delete", kind=kind.value, id=entity_id)
        return bool(payload.get("deleted", True))

    @transport_retry()
    async def save_config(self, credentials: RemoteCredentials, config: RemoteConfig) -> None:
        await self._post(credentials, "config", config=config.model_dump(mode="json", by_alias=True, exclude_none=True))

    @transport_retry()
    async def save_budgets(
        self,
        credentials: RemoteCredentials,
        budgets: dict[str, MonthlyBudget],
    ) -> None:
        await self._post(
            credentials,
            "budgets",
            budgets={key: budget.to_wire() for key, budget in budgets.items()},
        )

    @transport_retry()
    async def save_categories(
        self,
        credentials: RemoteCredentials,
        categories: list[CategoryDefinition],
    ) -> None:
        await self._post(
            credentials,
            "categories",
            categories=[category.to_wire() for category in categories],
        )
