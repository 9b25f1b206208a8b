"""
Trailgate — Application Package Initializer
============================================

What: Request-processing pipeline for the tours booking API.
Who:  Imported by uvicorn (`trailgate.main:app`), pytest, and business routers
      that plug into the pipeline through `trailgate.pipeline.Router`.

Architecture Note:

    ┌─────────────────────────────────────┐
    │   Business routers (collaborators)  │  ← tours, users, reviews, bookings
    ├─────────────────────────────────────┤
    │   Router dispatch (prefix → router) │  ← trailgate.pipeline.router
    ├─────────────────────────────────────┤
    │   Cross-cutting stages              │  ← trailgate.middleware
    ├─────────────────────────────────────┤
    │   Composition engine                │  ← trailgate.pipeline
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
