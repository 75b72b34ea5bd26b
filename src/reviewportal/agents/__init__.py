"""Review agent integration: process and server runners, output schema."""

from reviewportal.agents.result_schema import (
    ReviewComment,
    ReviewOutput,
    load_review_output,
    parse_review_output,
    parse_review_output_safe,
)
from reviewportal.agents.runner import (
    AgentRunner,
    AgentRunResult,
    ServerAgentRunner,
    SubprocessAgentRunner,
    create_agent_runner,
)
from reviewportal.agents.server_client import AgentServerClient

__all__ = [
    "AgentRunResult",
    "AgentRunner",
    "AgentServerClient",
    "ReviewComment",
    "ReviewOutput",
    "ServerAgentRunner",
    "SubprocessAgentRunner",
    "create_agent_runner",
    "load_review_output",
    "parse_review_output",
    "parse_review_output_safe",
]
