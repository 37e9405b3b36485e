"""Event type constants.

Centralizing event types as constants prevents typos and makes it easy
to discover every event the system records.
"""

# ─── Users ───────────────────────────────────────────────

USER_SIGNED_IN = "user.signed_in"

# ─── Request lifecycle ───────────────────────────────────

REQUEST_CREATED = "request.created"
REQUEST_ACCEPTED = "request.accepted"
REQUEST_COMPLETED = "request.completed"

# ─── Chat ────────────────────────────────────────────────

MESSAGE_SENT = "message.sent"
MESSAGES_READ = "messages.read"
