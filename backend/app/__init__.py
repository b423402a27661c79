"""
Stage Tracker Backend — Application Package Initializer
=========================================================

Layered architecture:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (StageProgressEngine)    │  ← progress + lifecycle rules
    ├─────────────────────────────────────┤
    │   StageStore port / SQLStageStore   │  ← persistence behind an interface
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
