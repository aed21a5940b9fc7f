# Services package init
"""
Travel Booking Backend — Services Layer
=========================================

Service Inventory:
    - booking_records:     Pure lifecycle states, pricing, refund policy
    - availability:        Overlap query against active bookings
    - destination_locks:   Per-destination asyncio critical sections
    - destination_service: Destination catalogue, counters and rating
    - booking_service:     Orchestrates the above for every booking operation

Only booking_service and destination_service touch the session's
transaction; booking_records never does I/O.
"""
