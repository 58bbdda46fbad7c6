"""
SLA Module
==========

Bounded Context for the service-level deadline engine.

Responsibilities:
- Select the SLA rule that applies to a ticket
- Compute business-hours-aware due dates
- Track compliance status (on track, approaching, breached, completed)
- Apply manual extensions, refreshes and snooze pauses
- Sweep open tickets for approaching and breached SLAs
"""

__version__ = "1.0.0"
