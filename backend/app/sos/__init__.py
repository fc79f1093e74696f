"""
sos — SOS alert lifecycle and notification fan-out.

Sub-modules:
    models      — Data structures shared across the system
    phone       — Canonical phone form for SMS delivery
    notifier    — SMS delivery capability (Twilio / unconfigured)
    fanout      — Per-recipient fan-out with outcome classification
    store       — Alert persistence (in-memory / SQL)
    directory   — Users and their emergency contacts (in-memory / SQL)
    lifecycle   — Orchestration: create, notify, resolve, respond, query
    db_models   — SQLAlchemy tables
"""
