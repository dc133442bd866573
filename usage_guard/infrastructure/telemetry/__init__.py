"""Usage telemetry: buffered event emission and cost estimation."""

from usage_guard.infrastructure.telemetry.cost import estimate_cost_usd, load_cost_table
from usage_guard.infrastructure.telemetry.emitter import TelemetryEmitter, UsageOutcome

__all__ = ["TelemetryEmitter", "UsageOutcome", "estimate_cost_usd", "load_cost_table"]
