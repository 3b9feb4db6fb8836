"""Best-effort interpretation of free-text model output.

Every function here is lossy: a model can answer in prose that
contains no parseable structure, so each stage falls back (structured, then
heuristic, then raw) instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .constants import FILE_WRITTEN_MARKER
from .contracts import ToolResult

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.-]+)\s*\}\}|\$\{\s*([\w.-]+)\s*\}")
_JSON_BLOCK = re.compile(r"\{[\s\S]*\}|\[[\s\S]*\]")
_LOCAL_PATH = re.compile(r"(?:/|\\|[a-zA-Z]:\\)[^\"'\s]+\.[a-zA-Z0-9]{1,5}")
_URL = re.compile(r"[a-zA-Z][a-zA-Z0-9+.-]*://\S+")

DECISION_KEYS = ("isValid", "approved", "decision")
AFFIRMATIVE_MARKERS = ("yes", "true", "confirmed")


def stringify(value: Any) -> str:
    """Render a variable for prompt substitution; non-scalars become JSON."""
    if isinstance(value, str):
        return value
    if value is None or isinstance(value, (bool, int, float)):
        return json.dumps(value)
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


def render_prompt(template: str, variables: Dict[str, Any]) -> str:
    """Substitute ``{{var}}`` and ``${var}`` placeholders from ``variables``.

    Unknown names are left as written so authors can spot them in the output.
    """

    def _replace(match: re.Match) -> str:
        name = match.group(1) or match.group(2)
        if name not in variables:
            return match.group(0)
        return stringify(variables[name])

    return _PLACEHOLDER.sub(_replace, template)


def extract_json(text: str) -> Optional[Any]:
    """Return the first JSON object or array found in ``text``, else ``None``.

    Tries the whole string first, then the widest ``{...}``/``[...]`` span.
    """
    stripped = text.strip()
    if not stripped:
        return None
    try:
        return json.loads(stripped)
    except ValueError:
        pass
    match = _JSON_BLOCK.search(stripped)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except ValueError:
        logger.debug("No parseable JSON block in model output")
        return None


def parse_output(output: str, output_format: str) -> Any:
    """Convert step output per its format; anything unparsable stays raw text."""
    if output_format != "json":
        return output
    parsed = extract_json(output)
    if parsed is None:
        logger.warning("Failed to parse JSON step output, keeping raw text")
        return output
    return parsed


def evaluate_decision(output: str) -> bool:
    """Interpret a decision step's output as a boolean.

    Reads the first boolean among ``isValid``, ``approved``, ``decision`` from
    a JSON object in the output. Otherwise falls back to a case-insensitive
    substring check, which is permissive and can give false positives.
    """
    parsed = extract_json(output)
    if isinstance(parsed, dict):
        for key in DECISION_KEYS:
            if isinstance(parsed.get(key), bool):
                return parsed[key]
    lower = output.lower()
    return any(marker in lower for marker in AFFIRMATIVE_MARKERS)


def files_from_tool_results(tool_results: Iterable[ToolResult]) -> List[str]:
    files: List[str] = []
    for result in tool_results:
        if not result.success or result.tool_name != "write_file":
            continue
        for line in result.output.splitlines():
            if line.startswith(FILE_WRITTEN_MARKER):
                path = line[len(FILE_WRITTEN_MARKER):].strip()
                if path and path not in files:
                    files.append(path)
    return files


def scan_local_paths(output: str) -> List[str]:
    """Find local filesystem paths in ``output``, ignoring anything inside URLs."""
    without_urls = _URL.sub(" ", output)
    found: List[str] = []
    for path in _LOCAL_PATH.findall(without_urls):
        path = path.rstrip(".,;:)")
        if path not in found:
            found.append(path)
    return found


def detect_generated_files(
    output: str, output_format: str, tool_results: Iterable[ToolResult]
) -> List[str]:
    """Prefer ``write_file`` evidence; scan the text only for file-format steps."""
    files = files_from_tool_results(tool_results)
    if files:
        return files
    if output_format == "file":
        return scan_local_paths(output)
    return []
