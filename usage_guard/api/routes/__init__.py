"""API routes for the usage guard."""
