# Services package init
"""
Stage Tracker Backend — Services Layer
========================================

What:  Business logic between routes (HTTP) and persistence.

Service Inventory:
    - StageStore (abstract): persistence port the engine depends on
    - SQLStageStore: StageStore on an async SQLAlchemy session
    - StageProgressEngine: progress computation, stage mutations and
      service-lifecycle reconciliation
"""
