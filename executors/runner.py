"""Child-process entry point for the sandbox and docker executors.

Reads a JSON payload (stdin, or the file named by argv[1]), rebuilds the
tool from its source, runs it once and writes a single JSON result line to
stdout. Anything the tool prints goes to stderr. Only stdlib modules and the
two stdlib-only helpers are imported so the interpreter fits under a small
address-space limit.
"""
import asyncio
import dataclasses
import datetime
import inspect
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from factory_normalizer import normalize  # noqa: E402
from tool_loader import load_module_from_source, select_export  # noqa: E402

EXIT_OK = 0
EXIT_TOOL_FAILED = 1
EXIT_MEMORY = 3


def _jsonable(value):
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _read_payload(argv):
    if len(argv) > 1:
        with open(argv[1], "r", encoding="utf-8") as f:
            return json.load(f)
    return json.loads(sys.stdin.read())


def run(payload):
    module = load_module_from_source(payload["source"], payload["module_name"], payload["origin"])
    export_name = payload["export_name"]
    raw = select_export(module, export_name)
    if not raw:
        return {"success": False, "kind": "ExportNotFound",
                "error": f'Export "{export_name}" not found in module'}

    normalized = normalize(raw, payload.get("env") or {})
    if not normalized.executable:
        return {"success": False, "kind": "NotExecutable",
                "error": f'Tool "{export_name}" could not be resolved to an object with a callable execute()'}

    result = normalized.tool.execute(payload.get("params") or {})
    if inspect.isawaitable(result):
        result = asyncio.run(_await(result))
    return {"success": True, "output": result}


async def _await(awaitable):
    return await awaitable


def main(argv):
    result_stream = sys.stdout
    sys.stdout = sys.stderr
    code = EXIT_OK
    try:
        result = run(_read_payload(argv))
        if not result["success"]:
            code = EXIT_TOOL_FAILED
    except MemoryError:
        result = {"success": False, "kind": "MemoryLimit", "error": "Memory limit exceeded"}
        code = EXIT_MEMORY
    except Exception as e:
        result = {"success": False, "kind": "RuntimeThrow", "error": str(e) or type(e).__name__}
        code = EXIT_TOOL_FAILED
    try:
        line = json.dumps(result, default=_jsonable)
    except (TypeError, ValueError) as e:
        line = json.dumps({"success": False, "kind": "RuntimeThrow",
                           "error": f"Tool output is not JSON serializable: {e}"})
        code = EXIT_TOOL_FAILED
    result_stream.write(line + "\n")
    result_stream.flush()
    return code


if __name__ == "__main__":
    sys.exit(main(sys.argv))
