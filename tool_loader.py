"""Evaluate published tool source into a module and pick exports from it.

Kept free of third-party imports: the sandbox runner imports this module
inside a memory-limited child interpreter.
"""
import ast
import re
import sys
import types
from enum import Enum
from typing import Any, List

MODULE_PREFIX = "tool_runner_pkg_"


class HandleShape(str, Enum):
    DIRECT = "direct"
    ZERO_ARG_FACTORY = "zero_arg_factory"
    CONFIG_FACTORY = "config_factory"
    UNRESOLVED = "unresolved"


def module_name_for(package_name: str) -> str:
    return MODULE_PREFIX + re.sub(r"\W", "_", package_name)


def load_module_from_source(source: str, module_name: str, origin: str) -> types.ModuleType:
    """Parse and execute tool source into a fresh module.

    The module is registered in ``sys.modules`` while it runs so that
    dataclasses and pydantic models defined by the tool can resolve their
    own module. SyntaxError and anything raised at import time propagate.
    """
    tree = ast.parse(source, filename=origin)
    code = compile(tree, origin, "exec")
    module = types.ModuleType(module_name)
    module.__file__ = origin
    sys.modules[module_name] = module
    try:
        exec(code, module.__dict__)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def list_exports(module: types.ModuleType) -> List[str]:
    declared = getattr(module, "__all__", None)
    if declared is not None:
        return [str(name) for name in declared]
    return sorted(
        name for name, value in vars(module).items()
        if not name.startswith("_") and not isinstance(value, types.ModuleType)
    )


def select_export(module: types.ModuleType, export_name: str) -> Any:
    """``exports[export_name] ?? exports.default ?? module``."""
    exports = {name: getattr(module, name, None) for name in list_exports(module)}
    value = exports.get(export_name)
    if not value:
        value = getattr(module, "default", None)
    if not value:
        value = module if _looks_like_tool(module) else None
    return value


def _looks_like_tool(obj: Any) -> bool:
    return callable(getattr(obj, "execute", None))
