import logging
from typing import Any, Mapping

logger = logging.getLogger(__name__)


def translate(message: Any, mapping: Mapping[str, str]) -> Any:
    """Return a copy of a JSON tree with every ``file`` field rewritten through ``mapping``.

    Keys are matched case-insensitively. Paths missing from the mapping, and
    ``file`` fields that are not strings, are left untouched.
    """
    if isinstance(message, dict):
        out = {}
        for key, value in message.items():
            if isinstance(key, str) and key.lower() == "file":
                if isinstance(value, str) and value in mapping:
                    logger.debug("[translate] %s -> %s", value, mapping[value])
                    out[key] = mapping[value]
                else:
                    out[key] = value
            else:
                out[key] = translate(value, mapping)
        return out
    if isinstance(message, (list, tuple)):
        return [translate(item, mapping) for item in message]
    return message
