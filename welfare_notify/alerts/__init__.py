"""
alerts — Classification, deduplication and SMS fan-out of notifications.

Sub-modules:
    channels/          — delivery backends (Naver Cloud SENS SMS, simulation)
    classifier         — disaster message relevance, category and level
    dedup              — time-windowed set of dispatched alert ids
    dispatcher         — batched concurrent send with per-recipient outcomes
    emergency_monitor  — 2-minute disaster poll with the 5-minute budget
    models             — data structures shared across the system
    store              — recipients, reminders and dispatch audit log
    templates          — 90-character SMS rendering
"""
