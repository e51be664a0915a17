"""Exception types raised outside the execute / generate paths.

Execution and generation never raise across the component boundary;
they report failures as result objects.  These exceptions cover
configuration problems that a caller has to fix before anything runs.
"""


class CopilotError(Exception):
    """Base class for all scene_copilot errors."""


class SettingsError(CopilotError):
    """The settings file could not be read or holds an invalid value."""
