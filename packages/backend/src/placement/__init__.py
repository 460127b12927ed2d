"""Placement platform — notification push service.

Live notifications for students, companies and admins of the university
placement board: a Server-Sent Events connection registry, the
persisted notification inbox, and a reconnecting subscription client.
"""

__version__ = "0.1.0"
