import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

SCHEMA_ATTRIBUTES = ("input_schema", "inputSchema")
COMPOSITE_KEYS = ("anyOf", "oneOf", "allOf")


def get_input_schema(tool: Any) -> Any:
    for attr in SCHEMA_ATTRIBUTES:
        value = getattr(tool, attr, None)
        if value is not None:
            return value
    return None


def extract_json_schema(tool: Any, label: str = "") -> Optional[Dict[str, Any]]:
    """Return the tool's input schema as a plain JSON-schema dict, or None.

    Accepted forms, tried in order: a dict, a pydantic model class, an
    object exposing ``model_json_schema()``/``json_schema()``/``schema()``,
    or a wrapper carrying the dict in a ``schema``/``json_schema`` attribute.
    """
    input_schema = get_input_schema(tool)
    if input_schema is None:
        return None

    if isinstance(input_schema, dict):
        return input_schema

    if isinstance(input_schema, type) and issubclass(input_schema, BaseModel):
        logger.debug(f"Using pydantic model_json_schema() for {label}")
        return input_schema.model_json_schema()

    for method in ("model_json_schema", "json_schema", "schema"):
        fn = getattr(input_schema, method, None)
        if callable(fn):
            try:
                produced = fn()
            except Exception as e:
                logger.warning(f"{method}() failed for {label}: {e}")
                continue
            if isinstance(produced, dict):
                logger.debug(f"Using {method}() for {label}")
                return produced

    for attr in ("schema", "json_schema"):
        value = getattr(input_schema, attr, None)
        if isinstance(value, dict):
            logger.debug(f"Using wrapped .{attr} for {label}")
            return value

    return None


def schema_diagnostics(tool: Any) -> Dict[str, Any]:
    input_schema = get_input_schema(tool)
    return {
        "hasInputSchema": input_schema is not None,
        "availableMethods": public_attributes(input_schema) if input_schema is not None else [],
    }


def public_attributes(obj: Any) -> List[str]:
    if isinstance(obj, dict):
        return [str(k) for k in obj]
    return sorted(name for name in dir(obj) if not name.startswith("_"))


def _default_object(schema: Dict[str, Any]) -> None:
    schema["type"] = "object"
    schema.setdefault("properties", {})
    schema.setdefault("additionalProperties", False)


def sanitize_json_schema(schema: Any, _nested: bool = False) -> Dict[str, Any]:
    """Fix schemas that model providers reject. Never mutates the input."""
    if not isinstance(schema, dict):
        logger.warning("Invalid schema (not an object), returning default object schema")
        return {"type": "object", "properties": {}, "additionalProperties": False}

    sanitized = dict(schema)

    if "type" in sanitized and sanitized["type"] in (None, "None", "none"):
        logger.warning(f"Invalid schema type {sanitized['type']!r}, replacing with 'object'")
        _default_object(sanitized)

    # nested anyOf/$ref nodes are typed by their members
    typed_elsewhere = _nested and (any(k in sanitized for k in COMPOSITE_KEYS) or "$ref" in sanitized)
    if not sanitized.get("type") and not typed_elsewhere:
        logger.warning("Schema missing type, defaulting to 'object'")
        _default_object(sanitized)

    properties = sanitized.get("properties")
    if isinstance(properties, dict):
        sanitized["properties"] = {
            key: sanitize_json_schema(value, True) if isinstance(value, dict) else value
            for key, value in properties.items()
        }

    if isinstance(sanitized.get("items"), dict):
        sanitized["items"] = sanitize_json_schema(sanitized["items"], True)

    for key in COMPOSITE_KEYS:
        if isinstance(sanitized.get(key), list):
            sanitized[key] = [sanitize_json_schema(s, True) for s in sanitized[key]]

    return sanitized
