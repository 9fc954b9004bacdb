"""
errors.py — Error taxonomy for the planning engine

Only structural problems raise. An occurrence nobody can cover, or a request
with no suggestions, is an empty result. Stale doctor/activity references are
logged and treated as unset.
"""


class StructuralError(ValueError):
    """Malformed identifier or date argument; fatal to the call."""
