"""
Transport boundary for the local inference engine.

Design intent:
- Keep httpx usage and NDJSON framing in one place.
- Give supervisor and generation client the same streaming primitive.
"""
