# Routes package init
"""
LifeSync Backend: API Routes Package
======================================

Route Inventory:
    - reports.py: POST /api/reports/generate   (on-demand report)
                  GET  /api/reports/{id}       (read a report)
    - usage.py:   GET  /api/usage              (LLM usage + circuit state)
                  POST /api/usage/reset        (operator reset)
    - health.py:  GET  /health                 (service health check)

Routes stay thin: extract request data, call a service, shape the response.
Business rules live in services/.
"""
