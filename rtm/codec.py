"""JSON encoding and decoding of message schemas.

Messages are :mod:`dataclasses`. Encoding produces compact JSON text and omits fields
holding ``None`` (and fields marked with :data:`rtm.envelope.OMIT_EMPTY` holding a falsy
value). Decoding is lenient in the same way the remote side is: unknown keys are
ignored and missing keys take the field's default. Scalar fields (``bool``, ``float``,
``int``, ``str``) must hold a JSON value of that type.

>>> from rtm.envelope import Message
>>> encode(Message(id=1, type='ping'))
'{"id":1,"type":"ping","ok":true}'
>>> decode('{"reply_to":1,"ok":true}', Message)
Message(id=0, reply_to=1, type=None, subtype=None, ok=True, error=None)
"""

import dataclasses
import functools
import types
import typing
from typing import Any, Optional, TypeVar, Union

import orjson as json

from .envelope import OMIT_EMPTY
from .exception import DecodeError

__all__ = ['decode', 'encode', 'from_dict', 'loads', 'to_dict']

T = TypeVar('T')
_UNION_TYPES: tuple[Any, ...] = (Union, getattr(types, 'UnionType', Union))
_SCALAR_TYPES = (bool, float, int, str)


def to_dict(message: Any) -> dict[str, Any]:
    """Convert a dataclass instance into a JSON-compatible dictionary."""
    obj: dict[str, Any] = {}
    for field in dataclasses.fields(message):
        value = getattr(message, field.name)
        if value is None or (field.metadata.get(OMIT_EMPTY) and not value):
            continue
        obj[field.name] = _to_json(value)
    return obj


def _to_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_dict(value)
    if isinstance(value, (list, tuple)):
        return [_to_json(element) for element in value]
    if isinstance(value, dict):
        return {key: _to_json(element) for key, element in value.items()}
    return value


def encode(message: Any) -> str:
    """Encode a message as a single-line JSON text frame.

    Raises:
        TypeError: If a field value is not serializable.
    """
    return json.dumps(to_dict(message)).decode()


def loads(data: Union[str, bytes]) -> Any:
    """Parse JSON text.

    Raises:
        DecodeError: If the text is not valid JSON.
    """
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise DecodeError('frame is not valid JSON') from exc


@functools.lru_cache(maxsize=256)
def _get_field_types(schema: type) -> dict[str, Any]:
    return typing.get_type_hints(schema)


def _is_instance(value: Any, hint: type) -> bool:
    # JSON booleans are Python ints; only accept them where a bool is expected.
    if isinstance(value, bool) and hint is not bool:
        return False
    if hint is float:
        return isinstance(value, (int, float))
    return isinstance(value, hint)


def _check_scalar(hints: tuple[Any, ...], value: Any) -> Any:
    scalars = [hint for hint in hints if hint in _SCALAR_TYPES]
    if scalars and not any(_is_instance(value, hint) for hint in scalars):
        raise DecodeError(
            'value has the wrong type',
            expected=[hint.__name__ for hint in scalars],
            actual=type(value).__name__,
        )
    return value


def _convert(hint: Any, value: Any) -> Any:
    origin, args = typing.get_origin(hint), typing.get_args(hint)
    if value is None:
        return None
    if origin in _UNION_TYPES:
        for arg in args:
            if dataclasses.is_dataclass(arg) or typing.get_origin(arg) is list:
                return _convert(arg, value)
        return _check_scalar(args, value)
    if origin is list and args and isinstance(value, list):
        return [_convert(args[0], element) for element in value]
    if dataclasses.is_dataclass(hint) and isinstance(hint, type):
        return from_dict(hint, value)
    return _check_scalar((hint,), value)


def from_dict(schema: type[T], obj: Any) -> T:
    """Build a dataclass instance from a parsed JSON object.

    Nested dataclasses (including optional ones and lists of them) are built
    recursively. Scalar values are checked against their field's type, and other
    values are passed through unchanged.

    Raises:
        DecodeError: If the object is not a JSON object or does not fit the schema.
    """
    if not isinstance(obj, dict):
        raise DecodeError(
            'expected a JSON object',
            schema=schema.__qualname__,
            actual=type(obj).__name__,
        )
    hints = _get_field_types(schema)
    kwargs = {}
    for field in dataclasses.fields(schema):  # type: ignore[arg-type]
        if field.init and field.name in obj:
            kwargs[field.name] = _convert(hints.get(field.name), obj[field.name])
    try:
        return schema(**kwargs)
    except TypeError as exc:
        raise DecodeError('frame does not fit schema', schema=schema.__qualname__) from exc


def decode(data: Union[str, bytes], schema: type[T], obj: Optional[Any] = None) -> T:
    """Decode a JSON text frame into a message schema.

    Parameters:
        data: The raw frame.
        schema: The dataclass to decode into.
        obj: The already parsed frame, if available, to avoid parsing twice.

    Raises:
        DecodeError: If the frame is not valid JSON or does not fit the schema.
    """
    return from_dict(schema, loads(data) if obj is None else obj)
