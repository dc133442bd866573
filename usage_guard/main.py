"""Main entry point for the usage guard API.

Usage:
    Development: uvicorn usage_guard.main:app --reload --port 8000
    Production: uvicorn usage_guard.main:app --host 0.0.0.0 --port 8000 --workers 4

Anonymous and emergency allotments live in process memory, so each worker
keeps its own counters.
"""

from usage_guard.api import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "usage_guard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
