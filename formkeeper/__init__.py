"""formkeeper — debounced per-field autosave and change tracking for edit forms.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)

Design Decisions:
    - Empty __init__.py: explicit imports only, no star exports
"""
