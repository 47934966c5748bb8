"""Services Layer — form session orchestration, autosave scheduling, validation.

Invariants:
    - Commit, submit, autosave-error and refresh hooks go through form_hooks.invoke
    - All asyncio tasks are created on the session's owning loop
"""
