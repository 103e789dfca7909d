"""
Safety package — alert and check-in lifecycle engine.

Modules:
    models             — records, enums and coordinates
    contacts           — trusted contact directory rules
    notification       — alert fan-out eligibility
    alert_lifecycle    — emergency alert state machine
    checkin_lifecycle  — timed check-in state machine
    incident_ledger    — incident report intake
    safe_zones         — safe-zone directory filter
    geolocation        — best-effort position acquisition
    ownership          — per-user record visibility
    service            — async orchestration over a RecordStore
    sweeper            — periodic missed check-in sweep
"""
