"""Inbound bank webhook endpoint."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, status

from banksync.api.dependencies import get_services
from banksync.api.schemas import IngestResponse
from banksync.services import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/up", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
def receive_up_webhook(
    body: Any = Body(...),
    services: Services = Depends(get_services),
):
    """
    Receive an UP Bank webhook delivery.
    Any structurally valid body is accepted; processing errors are kept on
    the stored event for the retry sweep. Malformed bodies get 400.
    """
    result = services.ingestion.ingest(body)
    return IngestResponse(
        event_id=result.event_id,
        status=result.status,
        transaction_id=result.transaction_id,
        error=result.error,
        matched_rule_ids=list(result.evaluation.matched_rule_ids) if result.evaluation else [],
    )
