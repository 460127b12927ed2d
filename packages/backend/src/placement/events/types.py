"""Push event names.

Learn: these are the `event:` names written on the SSE wire. Front-ends
subscribe with addEventListener(<name>), so renaming one is a breaking
change for every client.
"""

# ─── Per-user events ─────────────────────────────────────

NOTIFICATION = "notification"

# ─── Role-wide events ────────────────────────────────────

ANNOUNCEMENT = "announcement"

# ─── Notification levels (payload "type") ────────────────

LEVEL_SUCCESS = "success"
LEVEL_INFO = "info"
LEVEL_WARNING = "warning"
