"""Search and apply criteria for auto-tag rules.

SearchCriteria.matches is a pure predicate: no side effects, and the same
transaction and criteria always give the same verdict. Unset fields always
match.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from banksync.domain.entities import Transaction
from banksync.domain.errors import ValidationError
from banksync.utils.amount_parser import parse_amount, to_minor_units
from banksync.utils.date_parser import parse_date

# Stored criteria may use the camelCase keys of the original rule editor
_SEARCH_ALIASES = {
    "amountMin": "amount_min",
    "amountMax": "amount_max",
    "dateFrom": "date_from",
    "dateTo": "date_to",
    "dateMin": "date_from",
    "dateMax": "date_to",
    "accountId": "account",
}
_APPLY_ALIASES = {"removeOldTags": "remove_old_tags"}

SEARCH_FIELDS = {"description", "amount", "amount_min", "amount_max", "account", "date_from", "date_to", "type"}
APPLY_FIELDS = {"category", "tags", "remove_old_tags"}
TRANSACTION_TYPES = {"income", "expense"}


def _normalize_keys(raw: Any, aliases: dict[str, str], allowed: set[str], kind: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError(f"{kind} criteria must be an object, got {type(raw).__name__}")
    result = {}
    for key, value in raw.items():
        name = aliases.get(key, key)
        if name not in allowed:
            raise ValidationError(f"Unknown {kind} criteria field '{key}'")
        if value is None or value == "":
            continue
        result[name] = value
    return result


def split_tags(value: Any) -> list[str]:
    """Turn a comma-separated string or list of tags into a clean list."""
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = value
    else:
        raise ValidationError(f"Tags must be a string or list, got {type(value).__name__}")
    tags = []
    for part in parts:
        if not isinstance(part, str):
            raise ValidationError(f"Tag must be a string, got {type(part).__name__}")
        tag = part.strip()
        if tag:
            tags.append(tag)
    return tags


def merge_tags(current: Iterable[str], additions: Iterable[str]) -> list[str]:
    """Append tags not already present, comparing case-insensitively."""
    merged = list(current)
    seen = {tag.lower() for tag in merged}
    for tag in additions:
        if tag.lower() not in seen:
            merged.append(tag)
            seen.add(tag.lower())
    return merged


def resolve_dynamic_tags(tags: Iterable[str], today: date) -> list[str]:
    """Substitute date patterns such as {mmyy} in tag names."""
    yyyy = f"{today.year:04d}"
    yy = yyyy[-2:]
    mm = f"{today.month:02d}"
    dd = f"{today.day:02d}"
    # Longest patterns first so {ddmmyyyy} is not eaten by {dd}
    patterns = [
        ("{ddmmyyyy}", dd + mm + yyyy),
        ("{ddmmyy}", dd + mm + yy),
        ("{yyyy}", yyyy),
        ("{mmyy}", mm + yy),
        ("{ddmm}", dd + mm),
        ("{yy}", yy),
        ("{mm}", mm),
        ("{dd}", dd),
    ]
    resolved = []
    for tag in tags:
        for pattern, value in patterns:
            tag = tag.replace(pattern, value)
        resolved.append(tag)
    return resolved


@dataclass(frozen=True)
class SearchCriteria:
    """Predicate over transaction fields."""

    description: Optional[tuple[str, ...]] = None
    amount: Optional[int] = None
    amount_min: Optional[int] = None
    amount_max: Optional[int] = None
    account: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    type: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> "SearchCriteria":
        """Parse stored criteria.

        Amounts are held in minor units. Description may hold several
        alternatives separated by ``|``.

        Raises:
            ValidationError: If a field has the wrong type or a range is inverted
        """
        data = _normalize_keys(raw, _SEARCH_ALIASES, SEARCH_FIELDS, "search")
        values: dict[str, Any] = {}
        try:
            if "description" in data:
                if not isinstance(data["description"], str):
                    raise ValidationError("description must be a string")
                alternatives = tuple(
                    p.strip().lower() for p in data["description"].split("|") if p.strip()
                )
                if alternatives:
                    values["description"] = alternatives
            for name in ("amount", "amount_min", "amount_max"):
                if name in data:
                    values[name] = to_minor_units(parse_amount(data[name]))
            for name in ("date_from", "date_to"):
                if name in data:
                    values[name] = parse_date(data[name])
        except ValidationError:
            raise
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Invalid search criteria: {e}")

        if "account" in data:
            values["account"] = str(data["account"])
        if "type" in data:
            if data["type"] not in TRANSACTION_TYPES:
                raise ValidationError(f"type must be one of {sorted(TRANSACTION_TYPES)}")
            values["type"] = data["type"]

        criteria = cls(**values)
        if criteria.amount_min is not None and criteria.amount_max is not None:
            if criteria.amount_min > criteria.amount_max:
                raise ValidationError("Amount minimum cannot be greater than maximum")
        if criteria.date_from is not None and criteria.date_to is not None:
            if criteria.date_from > criteria.date_to:
                raise ValidationError("Date from cannot be after date to")
        return criteria

    @property
    def is_empty(self) -> bool:
        return all(value is None for value in self.__dict__.values())

    def matches(self, transaction: Transaction) -> bool:
        if self.description is not None:
            text = (transaction.description or "").lower()
            if not any(alt in text for alt in self.description):
                return False

        minor = to_minor_units(transaction.amount)
        if self.amount is not None and minor != self.amount:
            return False
        if self.amount_min is not None and abs(minor) < self.amount_min:
            return False
        if self.amount_max is not None and abs(minor) > self.amount_max:
            return False

        if self.account is not None and transaction.account_id != self.account:
            return False

        day = transaction.occurred_at.date()
        if self.date_from is not None and day < self.date_from:
            return False
        if self.date_to is not None and day > self.date_to:
            return False

        if self.type is not None:
            is_income = transaction.amount > Decimal("0")
            if (self.type == "income") != is_income:
                return False

        return True


@dataclass(frozen=True)
class ApplyCriteria:
    """Mutation applied when a rule matches."""

    category: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    remove_old_tags: bool = False

    @classmethod
    def parse(cls, raw: Any) -> "ApplyCriteria":
        """Parse stored apply criteria.

        Raises:
            ValidationError: If neither category nor tags is set
        """
        data = _normalize_keys(raw, _APPLY_ALIASES, APPLY_FIELDS, "apply")
        category = data.get("category")
        if category is not None and not isinstance(category, str):
            raise ValidationError("category must be a string")
        tags = tuple(split_tags(data.get("tags")))
        if not category and not tags:
            raise ValidationError("Must specify at least category or tags to apply")
        return cls(
            category=category or None,
            tags=tags,
            remove_old_tags=bool(data.get("remove_old_tags", False)),
        )

    @property
    def tags_only(self) -> bool:
        return self.category is None

    def resolved_tags(self, now: datetime) -> list[str]:
        return resolve_dynamic_tags(self.tags, now.date())


def validate_rule_criteria(search: Any, apply: Any) -> tuple[SearchCriteria, ApplyCriteria]:
    """Parse both halves of a rule, raising ValidationError on the first problem."""
    return SearchCriteria.parse(search), ApplyCriteria.parse(apply)
