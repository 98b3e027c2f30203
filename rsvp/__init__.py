"""
🎟️ RSVP Engine Package
----------------------
Multi-tenant event RSVP reply router: invitations go out per tenant, replies
come back through one chat number and are routed to the right guest sheet.
"""

from .config import settings  # noqa: F401

__version__ = "1.0.0"
