"""
OpenAPI defaulting and validation of options, backed by jsonschema.

Options schemas use the OpenAPI v3 subset Kubernetes CRDs use (type,
properties, required, default, ...), which Draft 7 validates as-is.
"""

import copy
import logging
from typing import Any, Dict, Iterator, List, Optional

from jsonschema import Draft7Validator, validators
from jsonschema.exceptions import SchemaError, ValidationError

from kubebundle.core.errors import SchemaValidationError

logger = logging.getLogger("kubebundle.openapi")


def _extend_with_default(validator_class):
    validate_properties = validator_class.VALIDATORS["properties"]

    def set_defaults(validator, properties, instance, schema) -> Iterator[ValidationError]:
        if isinstance(instance, dict):
            for prop, subschema in properties.items():
                if isinstance(subschema, dict) and "default" in subschema and prop not in instance:
                    instance[prop] = copy.deepcopy(subschema["default"])
        yield from validate_properties(validator, properties, instance, schema)

    return validators.extend(validator_class, {"properties": set_defaults})


DefaultingValidator = _extend_with_default(Draft7Validator)


def _format_error(err: ValidationError) -> str:
    path = ".".join(str(p) for p in err.absolute_path)
    return f"{path}: {err.message}" if path else err.message


def schema_errors(schema: Any) -> List[str]:
    """Reasons schema is not a usable options schema; empty when it is."""
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        return [_format_error(e)]
    return []


def validate_options(opts: Optional[Dict[str, Any]], schema: Optional[Dict[str, Any]]) -> List[str]:
    """Validation messages for opts against schema, sorted by path."""
    if schema is None:
        return []
    validator = Draft7Validator(schema)
    errs = sorted(validator.iter_errors(opts or {}), key=lambda e: list(map(str, e.absolute_path)))
    return [_format_error(e) for e in errs]


def apply_defaults(opts: Optional[Dict[str, Any]], schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Returns a copy of opts with the schema's declared defaults filled in,
    then validated against the schema. The caller's opts are never modified.
    """
    result = copy.deepcopy(opts) if opts else {}
    if schema is None:
        return result

    problems = schema_errors(schema)
    if problems:
        raise SchemaValidationError("invalid options schema", problems)

    # Defaulting errors are ignored here; the strict pass below reports them.
    for _ in DefaultingValidator(schema).iter_errors(result):
        pass

    problems = validate_options(result, schema)
    if problems:
        raise SchemaValidationError("options failed schema validation", problems)
    logger.debug(f"Applied schema defaults; {len(result)} top-level options")
    return result
