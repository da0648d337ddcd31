"""Turn a resolved export into something exposing ``execute(params)``.

Published tools come in three shapes: a ready object with ``execute``, a
zero-argument factory, or a factory that wants configuration. An export may
declare its shape up front with a ``__tool_shape__`` attribute; otherwise
the shapes are probed in order and the first one yielding ``execute`` wins.
Probing is a best-effort heuristic: a factory that needs some other calling
convention falls through and the raw export is returned unchanged, which
the executors report as NotExecutable.

Stdlib only; also imported by the sandbox runner.
"""
import inspect
import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from tool_loader import HandleShape

logger = logging.getLogger(__name__)

SHAPE_ATTRIBUTE = "__tool_shape__"


class NormalizedHandle(NamedTuple):
    tool: Any
    shape: HandleShape

    @property
    def executable(self) -> bool:
        return has_execute(self.tool)


def has_execute(obj: Any) -> bool:
    return obj is not None and callable(getattr(obj, "execute", None))


def find_api_key(env: Dict[str, str]) -> Optional[str]:
    for key, value in env.items():
        if "API_KEY" in key.upper() and value:
            return value
    return None


def config_variations(env: Dict[str, str]) -> List[Tuple[str, Tuple[Any, ...]]]:
    """Argument lists tried against a config factory, in order."""
    variations: List[Tuple[str, Tuple[Any, ...]]] = [("env", (dict(env),))]
    api_key = find_api_key(env)
    if api_key:
        variations.append(("apiKey", ({"apiKey": api_key},)))
        variations.append(("key", ({"key": api_key},)))
    first_value = next(iter(env.values()), None)
    if first_value:
        variations.append(("first-value", (first_value,)))
    return variations


def _try_call(factory: Callable, args: Tuple[Any, ...], label: str) -> Any:
    try:
        produced = factory(*args)
    except Exception as e:
        logger.debug(f"  Factory call ({label}) failed: {e}")
        return None
    if inspect.isawaitable(produced):
        # async factories are not supported; close to avoid a never-awaited warning
        close = getattr(produced, "close", None)
        if close:
            close()
        logger.debug(f"  Factory call ({label}) returned an awaitable, skipping")
        return None
    return produced if has_execute(produced) else None


def normalize(raw: Any, env: Optional[Dict[str, str]] = None) -> NormalizedHandle:
    env = env or {}
    if has_execute(raw):
        return NormalizedHandle(raw, HandleShape.DIRECT)
    if not callable(raw):
        return NormalizedHandle(raw, HandleShape.UNRESOLVED)

    declared = getattr(raw, SHAPE_ATTRIBUTE, None)
    if declared is not None:
        return _normalize_declared(raw, str(declared), env)

    name = getattr(raw, "__name__", type(raw).__name__)
    logger.info(f"Detected factory function {name}, probing call strategies")
    produced = _try_call(raw, (), "no-args")
    if produced is not None:
        return NormalizedHandle(produced, HandleShape.ZERO_ARG_FACTORY)

    if env:
        for label, args in config_variations(env):
            produced = _try_call(raw, args, label)
            if produced is not None:
                logger.info(f"  Factory {name} initialized with {label} config")
                return NormalizedHandle(produced, HandleShape.CONFIG_FACTORY)

    logger.warning(f"All factory strategies failed for {name}")
    return NormalizedHandle(raw, HandleShape.UNRESOLVED)


def _normalize_declared(raw: Callable, declared: str, env: Dict[str, str]) -> NormalizedHandle:
    if declared == HandleShape.DIRECT.value:
        return NormalizedHandle(raw, HandleShape.DIRECT)
    if declared == HandleShape.ZERO_ARG_FACTORY.value:
        produced = _try_call(raw, (), "declared no-args")
        if produced is not None:
            return NormalizedHandle(produced, HandleShape.ZERO_ARG_FACTORY)
    elif declared == HandleShape.CONFIG_FACTORY.value:
        produced = _try_call(raw, (dict(env),), "declared config")
        if produced is not None:
            return NormalizedHandle(produced, HandleShape.CONFIG_FACTORY)
    else:
        logger.warning(f"Unknown declared tool shape {declared!r}")
    return NormalizedHandle(raw, HandleShape.UNRESOLVED)
