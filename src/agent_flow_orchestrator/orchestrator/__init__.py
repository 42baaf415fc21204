"""Application wiring around the flow engine.

- Settings loaded from .env
- Structured logging
- The `flow-orchestrator` CLI
"""
