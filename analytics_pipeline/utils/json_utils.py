"""
JSON utilities for queue message bodies and DynamoDB items.
"""

import json
from decimal import Decimal
from typing import Any, Dict


def dumps_compact(data: Any) -> str:
    """Serialize to compact JSON, matching the wire form the edge process sends.

    Args:
        data: JSON-serializable value

    Returns:
        JSON string without insignificant whitespace
    """
    return json.dumps(data, separators=(',', ':'), ensure_ascii=False)


def loads_object(text: str) -> Dict[str, Any]:
    """Parse a JSON document that must be an object.

    Raises:
        ValueError: If the text is not valid JSON or not a JSON object
    """
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f'Expected a JSON object, got {type(data).__name__}')
    return data


def to_dynamo(value: Any) -> Any:
    """Convert floats to Decimal so boto3 can serialize the value."""
    return json.loads(json.dumps(value), parse_float=Decimal)


def from_dynamo(value: Any) -> Any:
    """Convert Decimal values returned by boto3 back to int or float."""
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value
