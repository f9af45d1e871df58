"""
Remote evaluation boundary for the audition portal.

Design intent:
- Talk to the external scorer over HTTP with bounded retries and polling.
- Turn scorer payloads into a single 0-100 score.
- Recover every background failure into a closed recording.
"""
