"""aicoder: a terminal client for AI completions and shell commands with a non-blocking task core."""

__version__ = "0.1.0"
