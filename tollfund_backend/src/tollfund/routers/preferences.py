from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_preferences
from ..preferences import PreferencesFile
from ..schemas import WelcomeFlag

router = APIRouter(
    prefix="/api/v1/preferences",
    tags=["preferences"],
)


# PUBLIC_INTERFACE
@router.get("/welcome", response_model=WelcomeFlag, summary="Whether the welcome screen was shown")
def get_welcome(preferences: PreferencesFile = Depends(get_preferences)) -> WelcomeFlag:
    return WelcomeFlag(welcome_shown=preferences.welcome_shown())


# PUBLIC_INTERFACE
@router.put("/welcome", response_model=WelcomeFlag, summary="Record that the welcome screen was shown")
def set_welcome(payload: WelcomeFlag, preferences: PreferencesFile = Depends(get_preferences)) -> WelcomeFlag:
    preferences.set_welcome_shown(payload.welcome_shown)
    return WelcomeFlag(welcome_shown=preferences.welcome_shown())
