"""
API boundary for the audition portal backend.

Design intent:
- Expose thin endpoints for submission, lookup, leaderboard and admin actions.
- Keep request validation explicit and failure modes predictable.
- Orchestrate the portal facade without embedding domain logic in routes.
"""
