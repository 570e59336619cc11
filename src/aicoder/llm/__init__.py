"""Completion clients (Ollama, OpenAI-compatible, offline) and the provider factory."""
