"""Bank API collaborator.

BankApiClient is the interface the sync queue, reconciler, ingestion and
backfill talk to. UpBankClient implements it against the UP Bank JSON:API
over httpx. Every HTTP call, successful or not, is written to the api_logs
table and counted against the hourly budget.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from banksync.bank.rate_limiter import ApiUsageTracker
from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.domain.entities import RemoteTransaction, SettlementStatus, SyncField
from banksync.domain.errors import PermanentError, SyncError, TransientError
from banksync.utils.amount_parser import parse_amount
from banksync.utils.date_parser import parse_timestamp

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429


@dataclass(frozen=True)
class PushResult:
    """Outcome of pushing one field update to the bank."""

    ok: bool
    retryable: bool = False
    error: Optional[str] = None
    rate_limited: bool = False

    @classmethod
    def from_error(cls, error: SyncError) -> "PushResult":
        return cls(
            ok=False,
            retryable=error.retryable,
            error=str(error),
            rate_limited=getattr(error, "rate_limited", False),
        )


@dataclass
class TransactionPage:
    """One page of bank transactions.

    Resources that could not be read are listed in errors as
    (resource id, message) instead of failing the whole page.
    """

    transactions: list[RemoteTransaction]
    cursor: Optional[str] = None
    errors: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class Webhook:
    """A webhook registered with UP Bank.

    secret_key is only returned when the webhook is created; it signs
    every delivery.
    """

    id: str
    url: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    secret_key: Optional[str] = None


@dataclass(frozen=True)
class WebhookDelivery:
    """One delivery attempt of a webhook event."""

    delivery_status: str
    status_code: Optional[int]
    created_at: Optional[datetime]


class BankApiClient(ABC):
    """Interface to the bank's transaction API."""

    @abstractmethod
    def push_field_update(self, external_id: str, field: SyncField, value: Any) -> PushResult:
        """Push a category, tags or both value to the bank.

        For SyncField.BOTH, value is {"category": ..., "tags": [...]}.
        Never raises for API failures; they are reported in the result.
        """
        pass

    @abstractmethod
    def fetch_transaction(self, external_id: str) -> RemoteTransaction:
        """Fetch the bank's current view of a transaction.

        Raises:
            TransientError: On network errors, 5xx or rate limiting
            PermanentError: On other 4xx responses or an unreadable body
        """
        pass

    @abstractmethod
    def list_transactions(
        self, page_size: int = 100, page_after: Optional[str] = None
    ) -> TransactionPage:
        """Fetch one page of transactions, newest first.

        Returns:
            The readable transactions, the cursor for the next page (None on
            the last page) and the resources that could not be read
        """
        pass


def classify_status(status_code: int) -> Optional[type[SyncError]]:
    """Map an HTTP status to the error class it should raise, or None on success."""
    if status_code < 400:
        return None
    if status_code == RATE_LIMIT_STATUS or status_code >= 500:
        return TransientError
    return PermanentError


def remote_from_resource(resource: dict[str, Any]) -> RemoteTransaction:
    """Build a RemoteTransaction from an UP Bank transaction resource.

    Raises:
        PermanentError: If required attributes are missing or malformed
    """
    try:
        attributes = resource["attributes"]
        relationships = resource.get("relationships") or {}
        category_data = (relationships.get("category") or {}).get("data")
        account_data = (relationships.get("account") or {}).get("data")
        tags_data = (relationships.get("tags") or {}).get("data") or []
        return RemoteTransaction(
            external_id=str(resource["id"]),
            account_id=account_data["id"] if account_data else None,
            amount=parse_amount(attributes["amount"]),
            description=attributes.get("description") or "",
            status=SettlementStatus(attributes.get("status", SettlementStatus.SETTLED.value)),
            occurred_at=parse_timestamp(attributes["createdAt"]),
            category=category_data["id"] if category_data else None,
            tags=tuple(tag["id"] for tag in tags_data),
            raw=resource,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise PermanentError(f"Unreadable transaction resource: {e}")


def webhook_from_resource(resource: dict[str, Any]) -> Webhook:
    """Build a Webhook from an UP Bank webhook resource.

    Raises:
        PermanentError: If required attributes are missing or malformed
    """
    try:
        attributes = resource["attributes"]
        created_at = attributes.get("createdAt")
        return Webhook(
            id=str(resource["id"]),
            url=str(attributes["url"]),
            description=attributes.get("description"),
            created_at=parse_timestamp(created_at) if created_at else None,
            secret_key=attributes.get("secretKey"),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise PermanentError(f"Unreadable webhook resource: {e}")


def delivery_from_resource(resource: dict[str, Any]) -> WebhookDelivery:
    """Build a WebhookDelivery from an UP Bank webhook delivery log resource."""
    try:
        attributes = resource["attributes"]
        response = attributes.get("response") or {}
        created_at = attributes.get("createdAt")
        return WebhookDelivery(
            delivery_status=str(attributes["deliveryStatus"]),
            status_code=response.get("statusCode"),
            created_at=parse_timestamp(created_at) if created_at else None,
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise PermanentError(f"Unreadable webhook log resource: {e}")


class UpBankClient(BankApiClient):
    """UP Bank API client.

    Example:
        client = UpBankClient(db, token="up:yeah:...")
        remote = client.fetch_transaction("txn-123")
    """

    def __init__(
        self,
        db: Database,
        token: str,
        config: Optional[SyncConfig] = None,
        usage: Optional[ApiUsageTracker] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize UP Bank client.

        Args:
            db: Database for API logs and usage counters
            token: Personal access token
            config: Base URL and timeout
            usage: Hourly usage tracker (built from db and config if omitted)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.db = db
        self.config = config or SyncConfig()
        self.usage = usage or ApiUsageTracker(db, self.config)
        self.http = httpx.Client(
            base_url=self.config.api_base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=self.config.http_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "UpBankClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send one request, log it, count it and classify failures.

        Raises:
            TransientError: Timeouts, connection errors, 429 and 5xx
            PermanentError: Any other 4xx
        """
        start = time.monotonic()
        status_code = None
        error = None
        rate_limited = False
        try:
            response = self.http.request(method, path, json=json, params=params)
            status_code = response.status_code
            error_class = classify_status(status_code)
            if error_class is not None:
                rate_limited = status_code == RATE_LIMIT_STATUS
                error = f"{method} {path} returned {status_code}: {response.text[:200]}"
                if error_class is TransientError:
                    raise TransientError(error, status_code, rate_limited=rate_limited)
                raise PermanentError(error, status_code)
            return response
        except httpx.TransportError as e:
            error = f"{method} {path} failed: {e.__class__.__name__}: {e}"
            raise TransientError(error)
        finally:
            latency_ms = int((time.monotonic() - start) * 1000)
            self.db.create_api_log(
                endpoint=path,
                method=method,
                status_code=status_code,
                latency_ms=latency_ms,
                error=error,
                rate_limited=rate_limited,
            )
            self.usage.track_call()
            if error:
                logger.warning("UP Bank API error: %s", error)
            else:
                logger.debug("UP Bank API %s %s -> %s (%dms)", method, path, status_code, latency_ms)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise PermanentError(f"Invalid JSON from UP Bank: {e}", response.status_code)

    def fetch_transaction(self, external_id: str) -> RemoteTransaction:
        response = self._request("GET", f"/transactions/{external_id}")
        body = self._json(response)
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise PermanentError("UP Bank response has no transaction data", response.status_code)
        return remote_from_resource(body["data"])

    def list_transactions(
        self, page_size: int = 100, page_after: Optional[str] = None
    ) -> TransactionPage:
        params: dict[str, Any] = {"page[size]": page_size}
        if page_after:
            params["page[after]"] = page_after
        response = self._request("GET", "/transactions", params=params)
        body = self._json(response)
        if not isinstance(body, dict):
            raise PermanentError("UP Bank response is not a JSON object", response.status_code)

        page = TransactionPage(transactions=[])
        for resource in body.get("data") or []:
            try:
                page.transactions.append(remote_from_resource(resource))
            except PermanentError as e:
                resource_id = resource.get("id") if isinstance(resource, dict) else None
                logger.warning("Skipping transaction %s: %s", resource_id, e)
                page.errors.append((str(resource_id), str(e)))
        next_link = (body.get("links") or {}).get("next")
        if next_link:
            page.cursor = httpx.URL(next_link).params.get("page[after]")
        return page

    def update_category(self, external_id: str, category: Optional[str]) -> None:
        """Set or clear the category of a transaction."""
        data = {"type": "categories", "id": category} if category else None
        self._request(
            "PATCH",
            f"/transactions/{external_id}/relationships/category",
            json={"data": data},
        )

    def update_tags(self, external_id: str, tags: list[str]) -> None:
        """Make the bank's tags equal to tags.

        Current remote tags are fetched first so that only the difference is
        added and removed.
        """
        remote_tags = list(self.fetch_transaction(external_id).tags)
        path = f"/transactions/{external_id}/relationships/tags"

        to_remove = [tag for tag in remote_tags if tag not in tags]
        if to_remove:
            self._request(
                "DELETE", path, json={"data": [{"type": "tags", "id": tag} for tag in to_remove]}
            )

        to_add = [tag for tag in tags if tag not in remote_tags]
        if to_add:
            self._request(
                "POST", path, json={"data": [{"type": "tags", "id": tag} for tag in to_add]}
            )

    def push_field_update(self, external_id: str, field: SyncField, value: Any) -> PushResult:
        field = SyncField(field)
        try:
            if field is SyncField.CATEGORY:
                self.update_category(external_id, value)
            elif field is SyncField.TAGS:
                self.update_tags(external_id, list(value or []))
            else:
                if not isinstance(value, dict):
                    raise PermanentError(f"Value for 'both' must be an object, got {value!r}")
                self.update_category(external_id, value.get("category"))
                self.update_tags(external_id, list(value.get("tags") or []))
        except SyncError as e:
            return PushResult.from_error(e)
        logger.info("Pushed %s for transaction %s", field.value, external_id)
        return PushResult(ok=True)

    def list_webhooks(self) -> list[Webhook]:
        """Webhooks registered for this token."""
        body = self._json(self._request("GET", "/webhooks"))
        if not isinstance(body, dict):
            raise PermanentError("UP Bank response is not a JSON object")
        return [webhook_from_resource(resource) for resource in body.get("data") or []]

    def create_webhook(self, url: str, description: Optional[str] = None) -> Webhook:
        """Register a webhook. The returned secret_key is not shown again."""
        attributes = {"url": url}
        if description:
            attributes["description"] = description
        response = self._request("POST", "/webhooks", json={"data": {"attributes": attributes}})
        body = self._json(response)
        if not isinstance(body, dict) or not isinstance(body.get("data"), dict):
            raise PermanentError("UP Bank response has no webhook data", response.status_code)
        webhook = webhook_from_resource(body["data"])
        logger.info("Registered webhook %s for %s", webhook.id, webhook.url)
        return webhook

    def delete_webhook(self, webhook_id: str) -> None:
        self._request("DELETE", f"/webhooks/{webhook_id}")
        logger.info("Deleted webhook %s", webhook_id)

    def ping_webhook(self, webhook_id: str) -> str:
        """Ask UP Bank to deliver a PING event to the webhook.

        Returns:
            ID of the PING event
        """
        response = self._request("POST", f"/webhooks/{webhook_id}/ping")
        body = self._json(response)
        try:
            return str(body["data"]["id"])
        except (KeyError, TypeError) as e:
            raise PermanentError(f"UP Bank response has no event id: {e}", response.status_code)

    def webhook_logs(self, webhook_id: str, page_size: int = 20) -> list[WebhookDelivery]:
        """Most recent delivery attempts of a webhook."""
        response = self._request(
            "GET", f"/webhooks/{webhook_id}/logs", params={"page[size]": page_size}
        )
        body = self._json(response)
        if not isinstance(body, dict):
            raise PermanentError("UP Bank response is not a JSON object", response.status_code)
        return [delivery_from_resource(resource) for resource in body.get("data") or []]
