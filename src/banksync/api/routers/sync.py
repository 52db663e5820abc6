"""Sync status endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from banksync.api.dependencies import get_services
from banksync.api.schemas import SyncItemResponse, TransactionResponse
from banksync.domain.entities import QueueStatus, SyncStatus
from banksync.services import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


@router.get("/transactions", response_model=List[TransactionResponse])
def list_transactions(
    sync_status: Optional[SyncStatus] = Query(None),
    owner_id: Optional[str] = Query(None),
    limit: int = Query(100, le=1000),
    services: Services = Depends(get_services),
):
    """List transactions, e.g. ?sync_status=conflict for items needing attention."""
    txns = services.transactions.list_transactions(
        owner_id=owner_id, sync_status=sync_status, limit=limit
    )
    return [TransactionResponse.from_entity(t) for t in txns]


@router.get("/queue", response_model=List[SyncItemResponse])
def list_queue(
    queue_status: Optional[QueueStatus] = Query(None, alias="status"),
    transaction_id: Optional[int] = Query(None),
    limit: int = Query(100, le=1000),
    services: Services = Depends(get_services),
):
    """List sync queue items, oldest first."""
    items = services.queue.list_items(status=queue_status, transaction_id=transaction_id, limit=limit)
    return [SyncItemResponse.from_entity(i) for i in items]


@router.post("/queue/{item_id}/retry", response_model=SyncItemResponse)
def retry_item(item_id: int, services: Services = Depends(get_services)):
    """Put a failed item back in the queue with a fresh attempt budget."""
    return SyncItemResponse.from_entity(services.queue.retry_item(item_id))


@router.post("/transactions/{transaction_id}/acknowledge", response_model=TransactionResponse)
def acknowledge_conflict(transaction_id: int, services: Services = Depends(get_services)):
    """Accept the bank's values as the new baseline for a conflicted transaction."""
    return TransactionResponse.from_entity(services.reconciler().acknowledge(transaction_id))


@router.get("/usage")
def api_usage(services: Services = Depends(get_services)):
    """Bank API calls used this hour."""
    return services.usage.usage_stats()
