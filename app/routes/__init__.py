# Routes package init
"""
Travel Booking Backend — API Routes Package
=============================================

Route Inventory:
    - bookings.py:      /api/bookings/...      (booking lifecycle)
    - destinations.py:  /api/destinations/...  (catalogue)
    - health.py:        GET /health

Routes stay thin: parse the request, resolve the caller, call a service,
return its response model. Rules live in app.services.
"""
