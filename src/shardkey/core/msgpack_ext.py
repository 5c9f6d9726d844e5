"""msgpack extension type for composite keys.

Keys are packed as ExtType(EXT_CODE, <8 big-endian bytes>), so they survive
a round trip through any msgpack store without being flattened to ints.
"""

import msgpack

from shardkey.core.composite_key import KEY_SIZE, CompositeKey, MalformedInputError

EXT_CODE = 48


def default(obj):
    """msgpack ``default`` hook: pack CompositeKey as an extension type."""
    if isinstance(obj, CompositeKey):
        return msgpack.ExtType(EXT_CODE, obj.to_bytes())
    raise TypeError(f"Cannot serialize {type(obj).__name__} with msgpack")


def ext_hook(code, data):
    """msgpack ``ext_hook``: rebuild CompositeKey, pass other codes through."""
    if code != EXT_CODE:
        return msgpack.ExtType(code, data)
    if len(data) != KEY_SIZE:
        raise MalformedInputError(
            f"Key extension payload must be {KEY_SIZE} bytes, got {len(data)}"
        )
    return CompositeKey.from_bytes(data)


def packb(obj) -> bytes:
    return msgpack.packb(obj, default=default)


def unpackb(data: bytes):
    return msgpack.unpackb(data, ext_hook=ext_hook)
