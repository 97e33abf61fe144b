"""
snake_case <-> camelCase key conversion for rows and payloads.

Conversion recurses into nested dicts and lists so embedded relations
(a request's user, category and comments) come out in the same shape as
their parent.
"""
from typing import Any

from pydantic.alias_generators import to_camel, to_snake


def _convert(value: Any, convert_key) -> Any:
    if isinstance(value, dict):
        return {convert_key(k): _convert(v, convert_key) for k, v in value.items()}
    if isinstance(value, list):
        return [_convert(v, convert_key) for v in value]
    return value


def camelize(value: Any) -> Any:
    return _convert(value, to_camel)


def snakify(value: Any) -> Any:
    return _convert(value, to_snake)
