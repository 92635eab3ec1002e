from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Agent(ABC):
    """Abstract base class for all agents.

    ``_campaign_id`` holds the campaign of the call in progress so helpers
    deeper in the agent can tag their log lines.
    """

    def __init__(self) -> None:
        self._campaign_id: str | None = None

    @abstractmethod
    def run(self, *args: Any, **kwargs: Any) -> Any:
        """Execute the agent and return its structured output."""


__all__ = ["Agent"]
