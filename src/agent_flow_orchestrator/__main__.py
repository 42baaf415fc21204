"""``python -m agent_flow_orchestrator``: same as the ``flow-orchestrator`` script."""

from agent_flow_orchestrator.orchestrator.main import main

raise SystemExit(main())
