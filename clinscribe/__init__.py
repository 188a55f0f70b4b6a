"""
clinscribe runtime package.

Design intent:
- Supervise a locally spawned Ollama server on a dedicated port.
- Stream clinical-note generation with live phase and throughput updates.
- Keep the presentation layer outside; expose state through update channels.
"""
