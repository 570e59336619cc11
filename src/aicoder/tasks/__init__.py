"""Task supervision: abort tokens, task lifecycle, progress ticks and shell runs."""
