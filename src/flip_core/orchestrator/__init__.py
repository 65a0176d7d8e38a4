"""Price orchestrator — background polling of tracked token prices."""

from flip_core.orchestrator.runner import PriceOrchestrator, derive_baseline

__all__ = ["PriceOrchestrator", "derive_baseline"]
