"""
Audition portal backend package.

Design intent:
- Accept one audio submission per identity and score it asynchronously.
- Keep evaluation (remote scorer) and portal state (lifecycle, admission) in separate modules.
"""
