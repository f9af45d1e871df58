"""
Portal orchestration for auditions.

Design intent:
- Own the recording state machine and the admission flag.
- Expose submit/get/list/leaderboard plus bulk admin operations.
"""
