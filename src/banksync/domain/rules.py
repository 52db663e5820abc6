"""Auto-tag rules: CRUD service and the matching engine."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from banksync.database.base import Database
from banksync.domain.criteria import (
    ApplyCriteria,
    SearchCriteria,
    merge_tags,
    validate_rule_criteria,
)
from banksync.domain.entities import (
    AutotagRule,
    RuleStatus,
    SyncStatus,
    Transaction,
    TransactionSource,
)
from banksync.domain.errors import (
    NotFoundError,
    ValidationError,
    empty_search_criteria,
    rule_not_found,
    transaction_not_found,
)
from banksync.domain.locks import KeyedLock, lock_key
from banksync.domain.sync_queue import SyncQueueService
from banksync.utils.date_parser import utcnow

logger = logging.getLogger(__name__)


class RuleService:
    """Service for managing auto-tag rules."""

    def __init__(self, db: Database):
        """Initialize rule service.

        Args:
            db: Database instance
        """
        self.db = db

    def _validate(
        self, search_criteria: Any, apply_criteria: Any, confirm_match_all: bool
    ) -> None:
        search, _ = validate_rule_criteria(search_criteria, apply_criteria)
        if search.is_empty and not confirm_match_all:
            raise ValidationError(empty_search_criteria())

    def create_rule(
        self,
        name: str,
        search_criteria: dict[str, Any],
        apply_criteria: dict[str, Any],
        owner_id: str = "default",
        status: RuleStatus = RuleStatus.ACTIVE,
        confirm_match_all: bool = False,
    ) -> int:
        """Create an auto-tag rule.

        Args:
            name: Display name
            search_criteria: Fields a transaction must match
            apply_criteria: Category and/or tags to apply on match
            owner_id: Rule owner
            status: Initial status
            confirm_match_all: Allow empty search criteria (matches everything)

        Returns:
            Rule ID

        Raises:
            ValidationError: If the criteria are invalid or search criteria is
                empty without confirmation
        """
        if not name or not name.strip():
            raise ValidationError("Rule name cannot be empty")
        self._validate(search_criteria, apply_criteria, confirm_match_all)
        rule_id = self.db.create_rule(
            owner_id=owner_id,
            name=name.strip(),
            search_criteria=dict(search_criteria or {}),
            apply_criteria=dict(apply_criteria),
            status=RuleStatus(status),
        )
        logger.info("Created rule %d '%s' for %s", rule_id, name, owner_id)
        return rule_id

    def get_rule(self, rule_id: int) -> AutotagRule:
        """Get rule by ID.

        Raises:
            NotFoundError: If rule doesn't exist
        """
        rule = self.db.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(rule_not_found(rule_id))
        return rule

    def list_rules(
        self, owner_id: Optional[str] = None, status: Optional[RuleStatus] = None
    ) -> list[AutotagRule]:
        """List rules in evaluation order."""
        return self.db.list_rules(owner_id=owner_id, status=status)

    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        search_criteria: Optional[dict[str, Any]] = None,
        apply_criteria: Optional[dict[str, Any]] = None,
        status: Optional[RuleStatus] = None,
        confirm_match_all: bool = False,
    ) -> AutotagRule:
        """Update a rule. Criteria are validated as a whole after the change.

        Raises:
            NotFoundError: If rule doesn't exist
            ValidationError: If the resulting criteria are invalid
        """
        rule = self.get_rule(rule_id)
        if name is not None and not name.strip():
            raise ValidationError("Rule name cannot be empty")
        if search_criteria is not None or apply_criteria is not None:
            self._validate(
                rule.search_criteria if search_criteria is None else search_criteria,
                rule.apply_criteria if apply_criteria is None else apply_criteria,
                confirm_match_all,
            )
        self.db.update_rule(
            rule_id,
            name=name.strip() if name is not None else None,
            status=RuleStatus(status) if status is not None else None,
            search_criteria=search_criteria,
            apply_criteria=apply_criteria,
        )
        return self.get_rule(rule_id)

    def set_status(self, rule_id: int, status: RuleStatus) -> AutotagRule:
        """Activate, deactivate or draft a rule."""
        return self.update_rule(rule_id, status=status)

    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule.

        Raises:
            NotFoundError: If rule doesn't exist
        """
        self.db.delete_rule(rule_id)
        logger.info("Deleted rule %d", rule_id)


@dataclass(frozen=True)
class CompiledRule:
    """A stored rule with its criteria parsed."""

    rule: AutotagRule
    search: SearchCriteria
    apply: ApplyCriteria


@dataclass(frozen=True)
class RuleOutcome:
    """Category and tags after applying matching rules."""

    category: Optional[str]
    tags: tuple[str, ...]
    matched_rule_ids: tuple[int, ...]


@dataclass(frozen=True)
class EvaluationResult:
    """Result of evaluating rules against one transaction."""

    transaction_id: int
    category: Optional[str]
    tags: tuple[str, ...]
    matched_rule_ids: tuple[int, ...] = ()
    changed: bool = False
    sync_item_id: Optional[int] = None


@dataclass
class RunReport:
    """Counts for a batch evaluation."""

    evaluated: int = 0
    changed: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)


def compile_rules(rules: list[AutotagRule]) -> list[CompiledRule]:
    """Parse rule criteria, skipping (and logging) malformed rules."""
    compiled = []
    for rule in rules:
        try:
            search, apply = validate_rule_criteria(rule.search_criteria, rule.apply_criteria)
        except ValidationError as e:
            logger.warning("Skipping malformed rule %d '%s': %s", rule.id, rule.name, e)
            continue
        compiled.append(CompiledRule(rule, search, apply))
    return compiled


def apply_rules(transaction: Transaction, rules: list[CompiledRule], now: datetime) -> RuleOutcome:
    """Compute category and tags for a transaction. Pure function.

    The first matching rule that sets a category wins: its category and tags
    are applied and later category rules are ignored. Every matching
    tag-only rule adds its tags. Tags are merged into the existing ones
    (case-insensitive) unless a contributing rule asks to remove old tags.
    """
    category = transaction.category
    added: list[str] = []
    keep_old_tags = True
    matched: list[int] = []
    category_applied = False

    for compiled in rules:
        if not compiled.search.matches(transaction):
            continue
        if not compiled.apply.tags_only:
            if category_applied:
                continue
            category_applied = True
            category = compiled.apply.category
        matched.append(compiled.rule.id)
        added = merge_tags(added, compiled.apply.resolved_tags(now))
        if compiled.apply.remove_old_tags:
            keep_old_tags = False

    base = list(transaction.tags) if keep_old_tags else []
    tags = merge_tags(base, added)
    return RuleOutcome(category=category, tags=tuple(tags), matched_rule_ids=tuple(matched))


class RuleEngine:
    """Evaluates active rules against transactions."""

    def __init__(
        self,
        db: Database,
        queue: SyncQueueService,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLock] = None,
    ):
        """Initialize rule engine.

        Args:
            db: Database instance
            queue: Sync queue used to push changes of bank transactions
            clock: Returns the current naive UTC time
            locks: Per-transaction locks shared with ingestion and user edits
        """
        self.db = db
        self.queue = queue
        self.clock = clock
        self.locks = locks if locks is not None else KeyedLock()

    def active_rules(self, owner_id: str) -> list[CompiledRule]:
        """Active rules of an owner in insertion order."""
        return compile_rules(self.db.list_rules(owner_id=owner_id, status=RuleStatus.ACTIVE))

    def evaluate(self, transaction_id: int) -> EvaluationResult:
        """Evaluate active rules against a transaction and persist the result.

        Only category and tags are written. Bank transactions whose
        category/tags changed get a sync queue item and sync status pending.
        The caller holds the transaction's lock; the write is still refused
        if the row changed after it was read.

        Raises:
            NotFoundError: If transaction doesn't exist
            ConflictError: If another writer changed the transaction meanwhile
        """
        txn = self.db.get_transaction(transaction_id)
        if txn is None:
            raise NotFoundError(transaction_not_found(transaction_id))
        if txn.is_deleted:
            return EvaluationResult(txn.id, txn.category, txn.tags)

        now = self.clock()
        rules = self.active_rules(txn.owner_id)
        outcome = apply_rules(txn, rules, now)
        changed = outcome.category != txn.category or outcome.tags != txn.tags

        sync_item_id = None
        if changed:
            pushes = txn.source == TransactionSource.BANK and txn.external_id is not None
            sync_status = None
            if pushes and txn.sync_status != SyncStatus.CONFLICT:
                sync_status = SyncStatus.PENDING
            self.db.update_categorization(
                txn.id,
                outcome.category,
                outcome.tags,
                processed=True,
                sync_status=sync_status,
                expected_updated_at=txn.updated_at,
            )
            if pushes:
                sync_item_id = self.queue.enqueue_change(
                    txn.id, txn.category, list(txn.tags), outcome.category, list(outcome.tags)
                )
            logger.info(
                "Transaction %d matched rules %s: category=%r tags=%s",
                txn.id,
                list(outcome.matched_rule_ids),
                outcome.category,
                list(outcome.tags),
            )
        elif not txn.processed:
            self.db.mark_processed(txn.id)

        self.db.record_rule_run(
            evaluated_rule_ids=[c.rule.id for c in rules],
            matched_rule_ids=outcome.matched_rule_ids,
            run_at=now,
            transaction_id=txn.id,
        )
        return EvaluationResult(
            transaction_id=txn.id,
            category=outcome.category,
            tags=outcome.tags,
            matched_rule_ids=outcome.matched_rule_ids,
            changed=changed,
            sync_item_id=sync_item_id,
        )

    def run_unprocessed(self, owner_id: Optional[str] = None, limit: Optional[int] = None) -> RunReport:
        """Evaluate every unprocessed transaction. One failure never stops the batch."""
        report = RunReport()
        for txn in self.db.list_transactions(owner_id=owner_id, processed=False, limit=limit):
            try:
                with self.locks(lock_key(txn)):
                    result = self.evaluate(txn.id)
            except ValueError as e:
                logger.warning("Rule evaluation failed for transaction %d: %s", txn.id, e)
                report.errors.append((txn.id, str(e)))
                continue
            report.evaluated += 1
            if result.changed:
                report.changed += 1
        return report

    def preview(
        self, search_criteria: dict[str, Any], owner_id: Optional[str] = None, limit: Optional[int] = None
    ) -> list[Transaction]:
        """Transactions the given search criteria would match. Nothing is written.

        Raises:
            ValidationError: If the criteria are invalid
        """
        search = SearchCriteria.parse(search_criteria)
        matches = [t for t in self.db.list_transactions(owner_id=owner_id) if search.matches(t)]
        return matches[:limit] if limit is not None else matches
