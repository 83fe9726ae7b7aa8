"""
Custom attribute engine.

Attribute definitions declare a name, a type and optional per-type rules.
Values are stored as strings, but every write is parsed against the
definition's type and rules first; a value that fails is never written.

Required attributes are advisory: no task or list write is ever blocked
because a required attribute is unset. Callers that care ask
check_required_attributes explicitly.
"""

import json
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from tasklist import models, schemas
from tasklist.database import read_transaction, write_transaction
from tasklist.errors import ConflictError, NotFoundError, ValidationError
from tasklist.models import AttributeType
from tasklist.services.common import check_name, require_list, require_task
from tasklist.time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
INTEGER_PATTERN = re.compile(r"^[+-]?\d+$")
DATETIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")
URL_SCHEMES = {"http", "https", "ftp"}
BOOLEAN_TOKENS = {
    "true": True, "yes": True, "1": True,
    "false": False, "no": False, "0": False,
}


# ============== Validation rule models ==============

class TextRules(BaseModel):
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    pattern: Optional[str] = None

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min_length is not None and self.max_length is not None and self.min_length > self.max_length:
            raise ValueError("min_length must not exceed max_length")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern: {e}")
        return self


class NumberRules(BaseModel):
    min: Optional[Decimal] = None
    max: Optional[Decimal] = None

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class DateRules(BaseModel):
    """Bounds are kept as strings and parsed with the attribute's own format."""
    min: Optional[str] = None
    max: Optional[str] = None

    class Config:
        extra = "forbid"


class ChoiceRules(BaseModel):
    choices: List[str] = Field(min_length=1)

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def check_choices(self):
        if any(not choice.strip() for choice in self.choices):
            raise ValueError("choices must not be blank")
        if len(set(self.choices)) != len(self.choices):
            raise ValueError("choices must be unique")
        return self


class MultipleChoiceRules(ChoiceRules):
    max_selections: Optional[int] = Field(default=None, ge=1)


class NoRules(BaseModel):
    class Config:
        extra = "forbid"


RULE_MODELS = {
    AttributeType.text: TextRules,
    AttributeType.url: TextRules,
    AttributeType.file_reference: TextRules,
    AttributeType.integer: NumberRules,
    AttributeType.decimal: NumberRules,
    AttributeType.date: DateRules,
    AttributeType.datetime: DateRules,
    AttributeType.single_choice: ChoiceRules,
    AttributeType.multiple_choice: MultipleChoiceRules,
    AttributeType.boolean: NoRules,
}

CHOICE_TYPES = {AttributeType.single_choice, AttributeType.multiple_choice}


# ============== Value parsing ==============

class _Reject(Exception):
    """Internal: a raw value violated one named constraint."""

    def __init__(self, constraint: str, message: str):
        super().__init__(message)
        self.constraint = constraint
        self.message = message


def _parse_date(raw: str) -> date:
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise _Reject("format", "must be a date in YYYY-MM-DD format")


def _parse_datetime(raw: str) -> datetime:
    if not DATETIME_PATTERN.match(raw):
        raise _Reject("format", "must be an ISO 8601 date-time (YYYY-MM-DDTHH:MM[:SS][+HH:MM|Z])")
    try:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        raise _Reject("format", "must be an ISO 8601 date-time (YYYY-MM-DDTHH:MM[:SS][+HH:MM|Z])")


def _check_length_and_pattern(value: str, rules: TextRules) -> None:
    if rules.min_length is not None and len(value) < rules.min_length:
        raise _Reject("min_length", f"must be at least {rules.min_length} characters")
    if rules.max_length is not None and len(value) > rules.max_length:
        raise _Reject("max_length", f"must be at most {rules.max_length} characters")
    if rules.pattern is not None and not re.fullmatch(rules.pattern, value):
        raise _Reject("pattern", f"must match pattern {rules.pattern}")


def _check_range(value, low, high) -> None:
    if low is not None and value < low:
        raise _Reject("min", f"must be >= {low}")
    if high is not None and value > high:
        raise _Reject("max", f"must be <= {high}")


def _text(raw: str, rules: TextRules) -> str:
    _check_length_and_pattern(raw, rules)
    return raw


def _file_reference(raw: str, rules: TextRules) -> str:
    value = raw.strip()
    if not value:
        raise _Reject("format", "must be a non-empty file reference")
    _check_length_and_pattern(value, rules)
    return value


def _url(raw: str, rules: TextRules) -> str:
    value = raw.strip()
    parsed = urlparse(value)
    if parsed.scheme.lower() not in URL_SCHEMES or not parsed.netloc:
        raise _Reject("format", "must be an absolute http, https or ftp URL")
    _check_length_and_pattern(value, rules)
    return value


def _integer(raw: str, rules: NumberRules) -> str:
    value = raw.strip()
    if not INTEGER_PATTERN.match(value):
        raise _Reject("type", "must be an integer")
    number = int(value)
    _check_range(number, rules.min, rules.max)
    return str(number)


def _decimal(raw: str, rules: NumberRules) -> str:
    try:
        number = Decimal(raw.strip())
    except InvalidOperation:
        raise _Reject("type", "must be a decimal number")
    if not number.is_finite():
        raise _Reject("type", "must be a finite decimal number")
    _check_range(number, rules.min, rules.max)
    return str(number)


def _date(raw: str, rules: DateRules) -> str:
    value = _parse_date(raw.strip())
    low = _parse_date(rules.min) if rules.min else None
    high = _parse_date(rules.max) if rules.max else None
    _check_range(value, low, high)
    return value.isoformat()


def _datetime(raw: str, rules: DateRules) -> str:
    value = _parse_datetime(raw.strip())
    low = _parse_datetime(rules.min) if rules.min else None
    high = _parse_datetime(rules.max) if rules.max else None
    _check_range(value, low, high)
    return value.isoformat()


def _boolean(raw: str, rules: NoRules) -> str:
    token = raw.strip().lower()
    if token not in BOOLEAN_TOKENS:
        raise _Reject("type", "must be one of true, false, yes, no, 1, 0")
    return "true" if BOOLEAN_TOKENS[token] else "false"


def _single_choice(raw: str, rules: ChoiceRules) -> str:
    value = raw.strip()
    if value not in rules.choices:
        raise _Reject("choices", f"must be one of: {', '.join(rules.choices)}")
    return value


def _multiple_choice(raw: str, rules: MultipleChoiceRules) -> str:
    text = raw.strip()
    if text.startswith("["):
        try:
            selected = json.loads(text)
        except json.JSONDecodeError:
            raise _Reject("format", "must be a JSON array or a comma-separated list")
        if not isinstance(selected, list) or not all(isinstance(item, str) for item in selected):
            raise _Reject("format", "must be a JSON array of strings")
        selected = [item.strip() for item in selected]
    else:
        selected = [item.strip() for item in text.split(",") if item.strip()]

    if not selected:
        raise _Reject("choices", "must select at least one choice")
    invalid = [item for item in selected if item not in rules.choices]
    if invalid:
        raise _Reject("choices", f"contains values not in choices: {', '.join(invalid)}")
    # Drop repeats, keep first-seen order
    selected = list(dict.fromkeys(selected))
    if rules.max_selections is not None and len(selected) > rules.max_selections:
        raise _Reject("max_selections", f"must select at most {rules.max_selections} choices")
    return json.dumps(selected)


VALUE_PARSERS: Dict[AttributeType, Callable] = {
    AttributeType.text: _text,
    AttributeType.integer: _integer,
    AttributeType.decimal: _decimal,
    AttributeType.date: _date,
    AttributeType.datetime: _datetime,
    AttributeType.boolean: _boolean,
    AttributeType.single_choice: _single_choice,
    AttributeType.multiple_choice: _multiple_choice,
    AttributeType.url: _url,
    AttributeType.file_reference: _file_reference,
}


def parse_rules(attr_type: AttributeType, rules: Optional[dict]) -> BaseModel:
    """
    Validate a rules dict against the closed rule set of its attribute type.

    Raises:
        ValidationError: unknown keys, wrong value types, inconsistent bounds,
            or missing choices on a choice type
    """
    if rules is None and attr_type in CHOICE_TYPES:
        raise ValidationError(
            f"Attribute type {attr_type.value} requires validation_rules with choices",
            {"type": attr_type.value},
        )
    try:
        parsed = RULE_MODELS[attr_type].model_validate(rules or {})
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'rules'}: {err['msg']}" for err in e.errors()
        )
        logger.info(f"Rejected validation rules for type {attr_type.value}: {problems}")
        raise ValidationError(
            f"Invalid validation rules for type {attr_type.value}: {problems}",
            {"type": attr_type.value, "rules": rules},
        )

    if isinstance(parsed, DateRules):
        bound_parser = _parse_date if attr_type == AttributeType.date else _parse_datetime
        try:
            low = bound_parser(parsed.min) if parsed.min else None
            high = bound_parser(parsed.max) if parsed.max else None
        except _Reject as e:
            raise ValidationError(
                f"Invalid validation rules for type {attr_type.value}: bounds {e.message}",
                {"type": attr_type.value, "rules": rules},
            )
        if low is not None and high is not None and low > high:
            raise ValidationError(
                f"Invalid validation rules for type {attr_type.value}: min must not exceed max",
                {"type": attr_type.value, "rules": rules},
            )
    return parsed


def validate_value(definition: models.AttributeDefinition, raw_value) -> str:
    """
    Parse a raw value against a definition and return its canonical string form.

    Raises:
        ValidationError: naming the violated constraint
    """
    if raw_value is None:
        raise ValidationError(
            f"Value for '{definition.name}' is required",
            {"attribute": definition.name, "constraint": "required"},
        )
    rules = parse_rules(definition.type, definition.validation_rules)
    try:
        return VALUE_PARSERS[definition.type](str(raw_value), rules)
    except _Reject as e:
        logger.info(f"Rejected value {raw_value!r} for '{definition.name}': {e.constraint}")
        raise ValidationError(
            f"Value for '{definition.name}' {e.message} ({e.constraint})",
            {"attribute": definition.name, "type": definition.type.value,
             "constraint": e.constraint, "value": str(raw_value)},
        )


# ============== Service ==============

class _Scope:
    def __init__(self, model, entity_column: str, require):
        self.model = model
        self.entity_column = entity_column
        self.require = require

    def column(self):
        return getattr(self.model, self.entity_column)


SCOPES = {
    "task": _Scope(models.TaskAttribute, "task_id", require_task),
    "list": _Scope(models.ListAttribute, "list_id", require_list),
}


def _to_value(row) -> schemas.AttributeValue:
    return schemas.AttributeValue(
        definition_id=row.definition_id,
        name=row.definition.name,
        type=row.definition.type,
        value=row.value,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class AttributeService:
    def __init__(self, db: Session):
        self.db = db

    # ============== Definitions ==============

    def create_attribute_definition(
        self,
        name: str,
        type: AttributeType,
        is_required: bool = False,
        default_value: Optional[str] = None,
        validation_rules: Optional[dict] = None
    ) -> models.AttributeDefinition:
        """
        Define a new custom attribute.

        Raises:
            ValidationError: bad name or type, malformed rules, or a default value
                that does not satisfy the type and rules
            ConflictError: an attribute with this name already exists
        """
        logger.debug(f"Creating attribute definition: name={name!r}, type={type}")
        name = check_name(name, "name", MAX_NAME_LENGTH)
        try:
            attr_type = AttributeType(type)
        except ValueError:
            raise ValidationError(f"Unknown attribute type: {type}", {"type": str(type)})

        rules = parse_rules(attr_type, validation_rules)
        definition = models.AttributeDefinition(
            name=name,
            type=attr_type,
            is_required=bool(is_required),
            validation_rules=rules.model_dump(mode="json", exclude_none=True) if validation_rules else None,
        )
        if default_value is not None:
            definition.default_value = validate_value(definition, default_value)

        if self.db.query(models.AttributeDefinition).filter(models.AttributeDefinition.name == name).first():
            logger.info(f"Attribute definition name already in use: {name}")
            raise ConflictError(f"Attribute '{name}' already exists", {"name": name})

        with write_transaction(self.db):
            self.db.add(definition)

        logger.info(f"Attribute definition created: {definition.name} (ID: {definition.id})")
        return definition

    def get_attribute_definition(self, definition_id: int) -> models.AttributeDefinition:
        definition = self.db.query(models.AttributeDefinition).filter(
            models.AttributeDefinition.id == definition_id
        ).first()
        if not definition:
            logger.critical(f"Attribute definition {definition_id} not found")
            raise NotFoundError(
                f"Attribute definition {definition_id} not found", {"definition_id": definition_id}
            )
        return definition

    def get_attribute_definition_by_name(self, name: str) -> models.AttributeDefinition:
        definition = self.db.query(models.AttributeDefinition).filter(
            models.AttributeDefinition.name == name
        ).first()
        if not definition:
            raise NotFoundError(f"Attribute '{name}' not found", {"name": name})
        return definition

    def get_all_attribute_definitions(self) -> List[models.AttributeDefinition]:
        with read_transaction(self.db):
            return self.db.query(models.AttributeDefinition).order_by(models.AttributeDefinition.name).all()

    def delete_attribute_definition(self, definition_id: int) -> bool:
        """Hard delete; every stored value of the attribute goes with it."""
        logger.debug(f"Deleting attribute definition {definition_id}")
        definition = self.db.query(models.AttributeDefinition).filter(
            models.AttributeDefinition.id == definition_id
        ).first()
        if not definition:
            logger.info(f"Attribute definition {definition_id} not found")
            return False

        with write_transaction(self.db):
            removed = 0
            for scope in SCOPES.values():
                removed += self.db.query(scope.model).filter(
                    scope.model.definition_id == definition_id
                ).delete(synchronize_session=False)
            self.db.delete(definition)

        logger.info(f"Attribute definition {definition_id} deleted with {removed} value(s)")
        return True

    # ============== Values ==============

    def _set_value(self, scope_name: str, entity_id: int, definition_id: int, raw_value) -> schemas.AttributeValue:
        scope = SCOPES[scope_name]
        logger.debug(f"Setting {scope_name} attribute: {scope_name}_id={entity_id}, definition_id={definition_id}")
        definition = self.get_attribute_definition(definition_id)
        scope.require(self.db, entity_id)
        value = validate_value(definition, raw_value)

        row = self.db.query(scope.model).filter(
            scope.column() == entity_id,
            scope.model.definition_id == definition_id
        ).first()
        now = utc_now()
        with write_transaction(self.db):
            if row:
                # Upsert keeps the original created_at
                row.value = value
                row.updated_at = now
            else:
                row = scope.model(definition_id=definition_id, value=value, created_at=now, updated_at=now)
                setattr(row, scope.entity_column, entity_id)
                self.db.add(row)

        logger.info(f"Attribute '{definition.name}' set on {scope_name} {entity_id}")
        return _to_value(row)

    def _remove_value(self, scope_name: str, entity_id: int, definition_id: int) -> bool:
        scope = SCOPES[scope_name]
        with write_transaction(self.db):
            removed = self.db.query(scope.model).filter(
                scope.column() == entity_id,
                scope.model.definition_id == definition_id
            ).delete(synchronize_session=False)
        logger.info(f"Removed attribute {definition_id} from {scope_name} {entity_id}: {bool(removed)}")
        return removed > 0

    def _get_values(self, scope_name: str, entity_id: int) -> List[schemas.AttributeValue]:
        scope = SCOPES[scope_name]
        with read_transaction(self.db):
            scope.require(self.db, entity_id)
            rows = self.db.query(scope.model).join(
                models.AttributeDefinition, models.AttributeDefinition.id == scope.model.definition_id
            ).filter(scope.column() == entity_id).order_by(models.AttributeDefinition.name).all()
            return [_to_value(row) for row in rows]

    def set_task_attribute(self, task_id: int, definition_id: int, raw_value) -> schemas.AttributeValue:
        return self._set_value("task", task_id, definition_id, raw_value)

    def set_list_attribute(self, list_id: int, definition_id: int, raw_value) -> schemas.AttributeValue:
        return self._set_value("list", list_id, definition_id, raw_value)

    def remove_task_attribute(self, task_id: int, definition_id: int) -> bool:
        return self._remove_value("task", task_id, definition_id)

    def remove_list_attribute(self, list_id: int, definition_id: int) -> bool:
        return self._remove_value("list", list_id, definition_id)

    def get_task_attributes(self, task_id: int) -> List[schemas.AttributeValue]:
        return self._get_values("task", task_id)

    def get_list_attributes(self, list_id: int) -> List[schemas.AttributeValue]:
        return self._get_values("list", list_id)

    def check_required_attributes(self, scope: str, entity_id: int) -> schemas.AttributeCompleteness:
        """
        Report which required attributes an entity is missing.

        This is the only place required-ness is looked at. A required
        attribute counts as satisfied by a stored value or by its default.
        """
        if scope not in SCOPES:
            raise ValidationError(f"Unknown attribute scope: {scope}", {"scope": scope})
        target = SCOPES[scope]
        target.require(self.db, entity_id)

        required = self.db.query(models.AttributeDefinition).filter(
            models.AttributeDefinition.is_required.is_(True)
        ).order_by(models.AttributeDefinition.name).all()
        present = {
            row.definition_id
            for row in self.db.query(target.model.definition_id).filter(target.column() == entity_id).all()
        }
        missing = [
            definition.name
            for definition in required
            if definition.id not in present and definition.default_value is None
        ]
        logger.debug(f"{scope} {entity_id} missing required attributes: {missing}")
        return schemas.AttributeCompleteness(
            entity_id=entity_id, scope=scope, is_complete=not missing, missing=missing
        )
