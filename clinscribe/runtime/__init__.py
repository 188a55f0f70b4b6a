"""
Inference server runtime boundary.

Design intent:
- Supervise the local Ollama process and its model store.
- Expose a stable base URL and observable status to the note generator.
"""

from .supervisor import OllamaSupervisor

__all__ = ["OllamaSupervisor"]
