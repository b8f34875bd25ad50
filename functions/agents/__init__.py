"""Myers Construct estimate pipeline.

This package contains the estimate orchestrator, which sequences material
identification, market grounding, historical context, synthesis and
validation for one estimate request.
"""

from agents.orchestrator import EstimateOrchestrator, create_orchestrator

__all__ = ["EstimateOrchestrator", "create_orchestrator"]
