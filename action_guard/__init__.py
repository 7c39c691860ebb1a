"""
Action Guard

Pre-execution relevance validation for scheduled relationship-management
actions. Scheduled emails, reminders and recommendations are re-checked
against live contact context immediately before they fire, suppressed or
substituted when their premise has gone stale, and routed through a
time-bounded human approval workflow when required.
"""

__version__ = "0.1.0"
