# Middleware package init
"""
Travel Booking Backend — Middleware Package
=============================================

Request path (outermost first):
    Request ID → Access Log → Rate Limit (/api/ only) → GZip → CORS → route

The request id is set before anything else runs, so access log lines,
429 bodies and exception handler bodies all carry the same id.
"""
