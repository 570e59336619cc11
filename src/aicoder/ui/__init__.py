"""Terminal front-end."""
