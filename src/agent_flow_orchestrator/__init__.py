"""Agent Flow Orchestrator.

Runs multi-agent workflows ("flows"): declarative DAGs of steps with
dependency ordering, conditional branching, quality gates and output
aggregation.
"""

__version__ = "0.1.0"

from agent_flow_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
