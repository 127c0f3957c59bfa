"""
Collaborators the catch-up orchestrator depends on.

Groove discovery, agent lookup and the agent runtime live outside this
package; they are handed in as implementations of these base classes.
Lookups signal absence by raising GrooveNotFoundError / AgentNotFoundError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from grooves.models import AutoApprovePolicy, GrooveContent, GrooveMetadata


@dataclass
class AgentRunRequest:
    agent: Any
    user_input: str
    session_id: str
    conversation_id: str
    max_iterations: int
    auto_approve_policy: Optional[AutoApprovePolicy] = None
    # Suppress live progress output (background runs)
    quiet: bool = False


class AgentExecutor(ABC):
    """Runs an agent on a prompt until it finishes."""

    @abstractmethod
    async def run(self, request: AgentRunRequest) -> Any:
        """Run to completion. Raises on failure."""
        pass


class GrooveProvider(ABC):
    """Looks up groove definitions by name."""

    @abstractmethod
    async def get(self, name: str) -> GrooveMetadata:
        pass

    @abstractmethod
    async def load(self, name: str) -> GrooveContent:
        """Metadata plus prompt body."""
        pass


class AgentResolver(ABC):
    @abstractmethod
    async def by_identifier(self, identifier: str) -> Any:
        pass
