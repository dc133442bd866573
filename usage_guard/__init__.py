"""Usage guard for AI-backed endpoints: tiers, burst limits, quotas, telemetry."""

__version__ = "1.0.0"
