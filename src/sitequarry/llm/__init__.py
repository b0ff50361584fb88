"""Local LLM integration (Ollama)."""

from .ollama import OllamaClient, adaptive_truncate, estimate_tokens, parse_json_reply

__all__ = ["OllamaClient", "adaptive_truncate", "estimate_tokens", "parse_json_reply"]
