"""
Schema Validation - Configuration validation for Analysis Services servers.

Provides the JSON Schema for the server configuration surface, functions to
validate raw configuration against it, and the naming-policy validators
that JSON Schema cannot express on its own.
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)

SKUS = ["D1", "B1", "B2", "S0", "S1", "S2", "S4", "S8", "S9"]
QUERYPOOL_CONNECTION_MODES = ["All", "ReadOnly"]

SERVER_NAME_PATTERN = re.compile(r"^[a-z][0-9a-z]{2,62}$")
RESOURCE_GROUP_NAME_PATTERN = re.compile(r"^[-\w._()]+$")
MAX_RESOURCE_GROUP_NAME_LENGTH = 90
MAX_TAG_COUNT = 50
MAX_TAG_KEY_LENGTH = 512
MAX_TAG_VALUE_LENGTH = 256

TIMEOUTS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "create": {"type": "number", "exclusiveMinimum": 0},
        "read": {"type": "number", "exclusiveMinimum": 0},
        "update": {"type": "number", "exclusiveMinimum": 0},
        "delete": {"type": "number", "exclusiveMinimum": 0},
    },
}

SERVER_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["name", "resource_group_name", "location", "sku"],
    "additionalProperties": False,
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "resource_group_name": {"type": "string", "minLength": 1},
        "location": {"type": "string", "minLength": 1},
        "sku": {"type": "string", "enum": SKUS},
        "admin_users": {
            "type": "array",
            "items": {"type": "string"},
            "uniqueItems": True,
        },
        "enable_power_bi_service": {"type": "boolean"},
        "ipv4_firewall_rule": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["name", "range_start", "range_end"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "range_start": {"type": "string", "format": "ipv4"},
                    "range_end": {"type": "string", "format": "ipv4"},
                },
            },
        },
        "querypool_connection_mode": {
            "type": "string",
            "enum": QUERYPOOL_CONNECTION_MODES,
        },
        "backup_blob_container_uri": {"type": "string", "minLength": 1},
        "tags": {
            "type": "object",
            "maxProperties": MAX_TAG_COUNT,
            "propertyNames": {"maxLength": MAX_TAG_KEY_LENGTH},
            "additionalProperties": {
                "type": "string",
                "maxLength": MAX_TAG_VALUE_LENGTH,
            },
        },
        "timeouts": TIMEOUTS_SCHEMA,
    },
}


def validate_openapi_schema(schema: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate that a schema is a valid OpenAPI v3 / JSON Schema.

    Args:
        schema: The schema to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        # OpenAPI 3.0 schemas are Draft 7 compatible
        Draft7Validator.check_schema(schema)
        return True, None
    except Exception as e:
        return False, f"Invalid schema: {str(e)}"


def validate_spec_against_schema(
    spec: Dict[str, Any], schema: Dict[str, Any]
) -> Tuple[bool, Optional[str]]:
    """
    Validate a configuration dict against a JSON Schema.

    Args:
        spec: The configuration to validate
        schema: The JSON Schema to validate against

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validator = Draft7Validator(
            schema, format_checker=Draft7Validator.FORMAT_CHECKER
        )
        errors = sorted(
            validator.iter_errors(spec),
            key=lambda e: [str(p) for p in e.absolute_path],
        )

        if not errors:
            return True, None

        error_messages = []
        for error in errors:
            path = ".".join(str(p) for p in error.absolute_path) or "(root)"
            error_messages.append(f"{path}: {error.message}")

        return False, "; ".join(error_messages)

    except ValidationError as e:
        return False, f"Validation error: {str(e)}"
    except Exception as e:
        logger.error(f"Unexpected error during validation: {e}")
        return False, f"Validation failed: {str(e)}"


def validate_server_name(value: str) -> str:
    """Validate an Analysis Services server name."""
    if not SERVER_NAME_PATTERN.match(value or ""):
        raise ValueError(
            f"name {value!r} must start with a lowercase letter, contain only "
            f"lowercase letters and numbers, and be 3 to 63 characters long"
        )
    return value


def validate_resource_group_name(value: str) -> str:
    """Validate a resource group name."""
    if not value:
        raise ValueError("resource_group_name cannot be empty")
    if len(value) > MAX_RESOURCE_GROUP_NAME_LENGTH:
        raise ValueError(
            f"resource_group_name may not exceed "
            f"{MAX_RESOURCE_GROUP_NAME_LENGTH} characters"
        )
    if value.endswith("."):
        raise ValueError("resource_group_name cannot end with a period")
    if not RESOURCE_GROUP_NAME_PATTERN.match(value):
        raise ValueError(
            "resource_group_name may only contain alphanumeric characters, "
            "dashes, underscores, parentheses and periods"
        )
    return value


def validate_server_config(raw: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate raw server configuration.

    Runs the JSON Schema first and the naming policies second, so that
    structural errors are reported before policy errors.

    Args:
        raw: Untyped configuration, as read from a manifest or a resource spec

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(raw, dict):
        return False, "(root): configuration must be an object"

    is_valid, error = validate_spec_against_schema(raw, SERVER_SCHEMA)
    if not is_valid:
        return False, error

    try:
        validate_server_name(raw["name"])
        validate_resource_group_name(raw["resource_group_name"])
    except ValueError as e:
        return False, str(e)

    rule_names = [rule["name"] for rule in raw.get("ipv4_firewall_rule", [])]
    duplicates = sorted({n for n in rule_names if rule_names.count(n) > 1})
    if duplicates:
        return False, (
            f"ipv4_firewall_rule: duplicate rule names: {', '.join(duplicates)}"
        )

    return True, None


def normalize_location(location: str) -> str:
    """Normalize a location to its canonical lowercase, space-free form."""
    return location.replace(" ", "").lower()
