# Routes package init
"""
Stage Tracker Backend — API Routes Package
============================================

What:  HTTP route handlers that accept requests and return responses.

Route Inventory:
    - stages.py:  GET   /api/contract-services/{id}/stages[/progress]
                  PATCH /api/contract-service-stages/{id}/status
                  PATCH /api/contract-service-stages/{id}/not-applicable
                  PATCH /api/contract-service-stages/status/bulk
                  POST  /api/services/{service_id}/stages/sync
    - health.py:  GET   /health

Routes stay thin: they extract and validate request data, call the progress
engine, and format the response with the right status code and headers.
"""
