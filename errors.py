"""Exception hierarchy for the ACCESS model."""

from typing import List, Optional


class AccessModelError(Exception):
    """Base exception for all ACCESS model errors."""


class InvalidInput(AccessModelError):
    """Configuration the engine cannot compute over (e.g. division by zero)."""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid inputs: " + "; ".join(self.problems))


class UnknownTrack(InvalidInput):
    """A track name that is not one of the four program tracks."""

    def __init__(self, name: str, known: Optional[List[str]] = None):
        self.name = name
        msg = f"Unknown track '{name}'"
        if known:
            msg += f" (expected one of {', '.join(known)})"
        super().__init__([msg])
