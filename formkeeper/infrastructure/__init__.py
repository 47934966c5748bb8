"""Infrastructure Layer — timers and logging setup.

Invariants:
    - Infrastructure never imports from services/
    - Timer expirations are always delivered on the owning event loop
"""
