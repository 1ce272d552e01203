"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from shiprates.api.routes import analyses, markup_profiles

__all__ = [
    "analyses",
    "markup_profiles",
]
