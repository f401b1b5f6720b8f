"""
main.py

Entry point for the Renovation Subsidy Project Management API.

Wires the in-memory infrastructure into the FastAPI app and starts uvicorn.

Usage
-----
    # Option 1 — run directly (host / port from Settings, .env or environment)
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check
    http://localhost:8000/mcp       ← MCP endpoint

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  GET   /api/v1/contacts              — pick an owner contact id
2.  POST  /api/v1/projects              — create a quotation
3.  GET   /api/v1/catalog               — pick a catalog entry id
4.  POST  /api/v1/projects/{id}/interventions                 — add it (default stages are seeded)
5.  POST  /api/v1/projects/{id}/interventions/{mid}/sub-interventions — price the work
6.  POST  /api/v1/projects/{id}/activate                      — quotation accepted
7.  POST  /api/v1/projects/{id}/stages/{sid}/status           — {"action": "activate"} ...
8.  GET   /api/v1/projects/{id}?time_sensitive=true           — progress, alerts, status
9.  GET   /api/v1/projects/{id}/financials                    — profit and margin

Attribution note
----------------
Send X-Actor-Id / X-Actor-Name / X-Actor-Email / X-Actor-Role headers to
have audit entries attributed to a person; otherwise the system actor is
recorded.
"""

import uvicorn

from api import app, get_uow
from config import get_settings
from infrastructure import InMemoryUnitOfWork


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To swap storage, replace InMemoryUnitOfWork with another implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,   # auto-reload on file changes during development
        log_level="debug" if settings.DEBUG else settings.LOG_LEVEL.lower(),
    )
