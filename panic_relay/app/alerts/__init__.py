"""
alerts — Emergency alert relay.

Sub-modules:
    phone          — phone number normalization and masking
    models         — data structures shared across the system
    builder        — alert document construction
    notifier       — push notification delivery (FCM / simulated)
    alert_service  — orchestration: create, list, finalize
"""
