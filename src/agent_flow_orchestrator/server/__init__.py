"""FastAPI server adapter for agent-flow-orchestrator.

Design intent:
- Keep flow semantics in `agent_flow_orchestrator.flows`
- Keep server-specific concerns (routing, CORS, job tracking) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from agent_flow_orchestrator.server.app import create_app
