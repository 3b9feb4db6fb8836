"""Shared constants for flowpilot."""

DEFAULT_MAX_TOOL_ITERATIONS = 10
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096
DEFAULT_REQUEST_TIMEOUT = 120.0

MAX_ITERATIONS_MESSAGE = "Maximum tool iterations reached. Please try a simpler request."
SUMMARY_REQUEST = (
    "Please summarize what you just did and the results of the tools you used."
)
DECISION_INSTRUCTION = (
    "\n\nIMPORTANT: This is a decision step. You must output a JSON object with a "
    "boolean field named 'decision' (true or false) indicating the result of the "
    'decision. Example: {"decision": true}'
)
FILE_WRITTEN_MARKER = "File written successfully: "
