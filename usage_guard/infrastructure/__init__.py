"""Infrastructure layer: auth, database, rate limiting, telemetry, health."""
