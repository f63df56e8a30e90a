"""
pricing_services -- composition layer over the pure pricing engines.

Usage:
    from pricing_config import get_active_config
    from pricing_services import CalculationOrchestrator

    orchestrator = CalculationOrchestrator(snapshot, get_active_config())
    result = orchestrator.calculate(ctx)
"""

from pricing_services.calculation_orchestrator import CalculationOrchestrator

__all__ = ["CalculationOrchestrator"]
