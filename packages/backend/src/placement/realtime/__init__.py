"""Real-time infrastructure — Server-Sent Events push channel.

Learn: Events flow through two halves:
1. Services → ConnectionRegistry.send_to_user / broadcast_to_type
2. Registry → per-connection queue → StreamingResponse → browser EventSource

Delivery is fire-and-forget. A user who is not connected simply misses
the live event; the persisted inbox (services.notification_service) is
what the UI re-fetches to catch up.
"""
