"""
channels — Delivery backends.

Each channel exposes:
    send_one(phone_number, text) → SendResult

Per-message transport retry lives in the channel; job-level retry lives in
the emergency monitor.
"""
