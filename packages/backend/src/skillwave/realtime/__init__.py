"""Real-time infrastructure — presence, gateway, relay and Redis pub/sub.

Events flow through two paths:
1. Gateway / outbox → NotificationRelay → Redis PUBLISH (or local delivery)
2. Redis SUBSCRIBE → each process's registry → WebSocket clients

Presence stays process-local; only envelopes cross process boundaries.
"""
