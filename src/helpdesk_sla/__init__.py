"""
Helpdesk SLA
============

SLA deadline engine for a help-desk ticketing system.
"""

__version__ = "1.0.0"
