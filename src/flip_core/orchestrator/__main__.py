"""Allow running the poller as: python -m flip_core.orchestrator [--config path]."""

from flip_core.orchestrator.runner import main

main()
