from __future__ import annotations

from fastapi import Request

from .preferences import PreferencesFile
from .service import TrackerService


# PUBLIC_INTERFACE
def get_service(request: Request) -> TrackerService:
    """Return the TrackerService bound to the running application."""
    return request.app.state.service


# PUBLIC_INTERFACE
def get_preferences(request: Request) -> PreferencesFile:
    """Return the preferences file bound to the running application."""
    return request.app.state.preferences
