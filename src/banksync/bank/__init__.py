"""Bank API collaborator for banksync."""

from banksync.bank.client import (
    BankApiClient,
    PushResult,
    TransactionPage,
    UpBankClient,
    Webhook,
    WebhookDelivery,
)
from banksync.bank.rate_limiter import ApiUsageTracker

__all__ = [
    "BankApiClient",
    "PushResult",
    "TransactionPage",
    "UpBankClient",
    "Webhook",
    "WebhookDelivery",
    "ApiUsageTracker",
]
