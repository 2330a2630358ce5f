# Routes package init
"""
Portable Backend — API Routes Package
=======================================

What:  HTTP route handlers that accept requests and return responses.
How:   One module per resource; every handler stays thin and delegates to a service.

Route Inventory:
    - items.py:     GET/POST /api/items, POST /api/items/reprocess,
                    GET/PATCH/DELETE /api/items/{id},
                    POST /api/items/{id}/keep|queue|archive|restore|favorite,
                    GET /api/items/{id}/topics
    - views.py:     GET /api/views/{view}
    - topics.py:    GET /api/topics
    - profile.py:   GET /api/profile, POST /api/profile/api-key
    - extension.py: GET /api/extension/version   (no auth)
    - health.py:    GET /health                  (no auth)
"""
