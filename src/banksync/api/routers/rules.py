"""Auto-tag rule CRUD endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from banksync.api.dependencies import get_services
from banksync.api.schemas import RuleCreate, RuleResponse, RuleUpdate, TransactionResponse
from banksync.domain.entities import RuleStatus
from banksync.services import Services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/rules", tags=["Rules"])


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(payload: RuleCreate, services: Services = Depends(get_services)):
    """Create a rule. Empty search criteria needs confirm_match_all."""
    rule_id = services.rules.create_rule(
        name=payload.name,
        search_criteria=payload.search_criteria,
        apply_criteria=payload.apply_criteria,
        owner_id=payload.owner_id,
        status=payload.status,
        confirm_match_all=payload.confirm_match_all,
    )
    return RuleResponse.from_entity(services.rules.get_rule(rule_id))


@router.get("", response_model=List[RuleResponse])
def list_rules(
    owner_id: Optional[str] = Query(None),
    rule_status: Optional[RuleStatus] = Query(None, alias="status"),
    services: Services = Depends(get_services),
):
    """List rules in evaluation order."""
    return [RuleResponse.from_entity(r) for r in services.rules.list_rules(owner_id, rule_status)]


@router.get("/{rule_id}", response_model=RuleResponse)
def get_rule(rule_id: int, services: Services = Depends(get_services)):
    return RuleResponse.from_entity(services.rules.get_rule(rule_id))


@router.patch("/{rule_id}", response_model=RuleResponse)
def update_rule(rule_id: int, payload: RuleUpdate, services: Services = Depends(get_services)):
    rule = services.rules.update_rule(
        rule_id,
        name=payload.name,
        search_criteria=payload.search_criteria,
        apply_criteria=payload.apply_criteria,
        status=payload.status,
        confirm_match_all=payload.confirm_match_all,
    )
    return RuleResponse.from_entity(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: int, services: Services = Depends(get_services)):
    services.rules.delete_rule(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{rule_id}/preview", response_model=List[TransactionResponse])
def preview_rule(
    rule_id: int,
    limit: int = Query(50, le=500),
    services: Services = Depends(get_services),
):
    """Transactions the rule's search criteria would match. Nothing is changed."""
    rule = services.rules.get_rule(rule_id)
    matches = services.engine.preview(rule.search_criteria, owner_id=rule.owner_id, limit=limit)
    return [TransactionResponse.from_entity(t) for t in matches]
