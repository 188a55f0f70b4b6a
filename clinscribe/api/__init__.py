"""
API orchestration boundary for the scribe runtime.

Design intent:
- Compose one supervisor and one generation client per process.
- Expose thin, typed endpoints for runtime control and note jobs.
- Keep failure modes predictable: state for runtime errors, HTTP errors for bad requests.
"""
