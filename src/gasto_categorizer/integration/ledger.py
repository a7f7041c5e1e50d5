import asyncio
import os
from time import monotonic
from typing import Any

import httpx

from gasto_categorizer.core.settings import get_env_float
from gasto_categorizer.interfaces import AccountCategoryProvider, LedgerApiClient
from gasto_categorizer.logger import get_logger
from gasto_categorizer.models import (
    LedgerResponse,
    LedgerTransactionRequest,
    RemoteCategory,
    RemoteSubCategory,
    TransactionKind,
)

logger = get_logger(__name__)

DEFAULT_CATEGORIES_CACHE_TTL_SECONDS = 60.0
DEFAULT_TIMEOUT_SECONDS = 30.0

_WIRE_KINDS = {
    "EXPENSES": TransactionKind.EXPENSE,
    "EXPENSE": TransactionKind.EXPENSE,
    "INCOME": TransactionKind.INCOME,
}
_RETRYABLE_CLIENT_STATUSES = {408, 409, 425, 429}


class LedgerNotConfiguredError(RuntimeError):
    pass


def _parse_category(raw: dict[str, Any]) -> RemoteCategory | None:
    kind = _WIRE_KINDS.get(str(raw.get("type", "")).upper())
    if kind is None or not raw.get("id") or not raw.get("name"):
        return None
    subs = [
        RemoteSubCategory(id=str(sub["id"]), name=str(sub["name"]))
        for sub in raw.get("subCategories") or []
        if sub.get("id") and sub.get("name")
    ]
    return RemoteCategory(id=str(raw["id"]), name=str(raw["name"]), kind=kind, sub_categories=subs)


def _wire_payload(request: LedgerTransactionRequest) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "userId": request.user_id,
        "accountId": request.account_id,
        "type": "EXPENSES" if request.kind == TransactionKind.EXPENSE else "INCOME",
        "amount": request.amount,
        "categoryId": request.category_id,
        "subCategoryId": request.sub_category_id,
        "description": request.description,
        "date": request.date,
        "source": request.source,
    }
    if request.merchant:
        payload["merchant"] = request.merchant
    return payload


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or fallback)
        if error:
            return str(error)
        if body.get("message"):
            return str(body["message"])
    return fallback


class LedgerClient(AccountCategoryProvider, LedgerApiClient):
    """httpx client for the account-management / ledger API."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        categories_cache_ttl: float | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or os.getenv("LEDGER_API_URL") or "").rstrip("/") or None
        self.token = token or os.getenv("LEDGER_API_TOKEN")
        self.headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.timeout = (
            timeout
            if timeout is not None
            else get_env_float("LEDGER_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, min_value=0.1)
        )
        self._client = client
        self._client_lock = asyncio.Lock()
        self._cache_lock = asyncio.Lock()
        self._categories_cache: dict[str, tuple[list[dict[str, Any]], float]] = {}
        cache_ttl = categories_cache_ttl
        if cache_ttl is None:
            cache_ttl = get_env_float(
                "CATEGORY_CACHE_TTL", DEFAULT_CATEGORIES_CACHE_TTL_SECONDS, min_value=0.0
            )
        self._categories_cache_ttl = max(0.0, cache_ttl)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.token)

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient()
                self._client = client
            return client

    def _get_cached_accounts(self, user_id: str, *, allow_stale: bool = False) -> list[dict[str, Any]] | None:
        cached = self._categories_cache.get(user_id)
        if cached is None or self._categories_cache_ttl <= 0:
            return None
        accounts, expires_at = cached
        if allow_stale or monotonic() < expires_at:
            return accounts
        return None

    def _cache_accounts(self, user_id: str, accounts: list[dict[str, Any]]) -> None:
        """Must be called while holding _cache_lock."""
        if self._categories_cache_ttl <= 0:
            return
        self._categories_cache[user_id] = (accounts, monotonic() + self._categories_cache_ttl)

    async def _fetch_accounts_from_api(self, user_id: str) -> list[dict[str, Any]]:
        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}/external/users/{user_id}/categories",
            headers=self.headers,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        return data.get("accounts", [])

    async def _get_accounts(self, user_id: str) -> list[dict[str, Any]]:
        async with self._cache_lock:
            cached = self._get_cached_accounts(user_id)
            if cached is not None:
                return cached
            try:
                accounts = await self._fetch_accounts_from_api(user_id)
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("[LEDGER] Error fetching categories for user %s: %s", user_id, exc)
                cached = self._get_cached_accounts(user_id, allow_stale=True)
                if cached is not None:
                    logger.warning("[LEDGER] Serving stale categories for user %s.", user_id)
                    return cached
                raise
            self._cache_accounts(user_id, accounts)
            return accounts

    async def list_categories(self, user_id: str, account_id: str) -> list[RemoteCategory]:
        if not self.configured:
            raise LedgerNotConfiguredError("LEDGER_API_URL or LEDGER_API_TOKEN not set")

        accounts = await self._get_accounts(user_id)
        account = next((acc for acc in accounts if str(acc.get("id")) == account_id), None)
        if account is None:
            logger.warning("[LEDGER] Account %s not found for user %s.", account_id, user_id)
            return []
        categories = []
        for raw in account.get("categories") or []:
            parsed = _parse_category(raw)
            if parsed is not None:
                categories.append(parsed)
        return categories

    def invalidate(self, user_id: str | None = None) -> None:
        if user_id is None:
            self._categories_cache.clear()
        else:
            self._categories_cache.pop(user_id, None)

    async def create_transaction(self, request: LedgerTransactionRequest) -> LedgerResponse:
        if not self.configured:
            logger.error("[LEDGER] Ledger credentials missing.")
            return LedgerResponse(success=False, error="Ledger API not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/external/transactions",
                headers=self.headers,
                json=_wire_payload(request),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            try:
                body = exc.response.json()
            except ValueError:
                body = None
            message = _error_message(body, f"HTTP {status}")
            retryable = status >= 500 or status in _RETRYABLE_CLIENT_STATUSES
            logger.error("[LEDGER] Create transaction failed (%s): %s", status, message)
            return LedgerResponse(
                success=False, error=message, status_code=status, retryable=retryable
            )
        except httpx.RequestError as exc:
            logger.error("[LEDGER] Create transaction request error: %s", exc)
            return LedgerResponse(success=False, error=str(exc) or type(exc).__name__)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("success"):
            transaction = body.get("transaction") or {}
            transaction_id = transaction.get("id") if isinstance(transaction, dict) else None
            return LedgerResponse(
                success=True,
                transaction_id=str(transaction_id) if transaction_id else None,
                status_code=response.status_code,
            )
        message = _error_message(body, "Resposta inválida da API")
        logger.error("[LEDGER] Ledger refused transaction: %s", message)
        return LedgerResponse(success=False, error=message, status_code=response.status_code)
