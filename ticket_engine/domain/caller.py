from dataclasses import dataclass


@dataclass(frozen=True)
class CallerContext:
    """Authenticated identity of whoever is calling the engine."""

    user_id: str
