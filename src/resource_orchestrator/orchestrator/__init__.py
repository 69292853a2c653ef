"""Plan execution: nodes, errors, events and the orchestrator engine."""
