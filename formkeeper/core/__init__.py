"""Core Layer — pure form-state logic, no IO, no event loop.

Invariants:
    - No module in core/ imports from services/ or infrastructure/
    - Trackers, guards and stores are plain objects mutated only by their owner

Design Decisions:
    - Functional core separated from imperative shell (services/ owns scheduling and hooks)
"""
