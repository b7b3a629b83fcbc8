"""
Ports for the opaque interview collaborators.

Turn processing (speech-to-text, LLM, text-to-speech) and progress reading
live outside this service. The API only checks session ownership and then
delegates through these interfaces. The Unconfigured* defaults answer 503
until a real implementation is installed on app.state.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from mockinterview.core.errors import ServiceUnavailableError


class TurnProcessor(ABC):
    @abstractmethod
    def process_turn(self, session_id: str, audio: bytes) -> Dict[str, Any]:
        """Process one candidate turn and return the interviewer's reply."""
        ...


class ProgressReader(ABC):
    @abstractmethod
    def get_progress(self, session_id: str) -> Dict[str, Any]:
        """Return a progress summary (phase, topics covered, percentage)."""
        ...


class UnconfiguredTurnProcessor(TurnProcessor):
    def process_turn(self, session_id: str, audio: bytes) -> Dict[str, Any]:
        raise ServiceUnavailableError("Turn processing is not configured")


class UnconfiguredProgressReader(ProgressReader):
    def get_progress(self, session_id: str) -> Dict[str, Any]:
        raise ServiceUnavailableError("Progress reporting is not configured")
