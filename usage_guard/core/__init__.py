"""Core usage logic: tiers, reset clock, errors, quota enforcement."""
