# Middleware package init
"""
LifeSync Backend: Middleware Package
======================================

Middleware Chain (request direction):
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID first, so the access log and error bodies carry it
    2. Logging measures the full duration, including the LLM call
    3. CORS is FastAPI's CORSMiddleware (handles preflight)

Responses travel the chain in reverse; the request id header is added on
the way out.
"""
