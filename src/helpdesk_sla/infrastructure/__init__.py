"""
Infrastructure Layer
=====================

Application-wide technical concerns:
- Database connection management
"""
