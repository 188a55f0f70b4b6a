"""
Note generation boundary for the scribe runtime.

Design intent:
- Turn a doctor-patient conversation into a structured clinical note via the local engine.
- Publish phase and throughput updates while the note streams in.
- Keep the text received so far when a generation is stopped.
"""
