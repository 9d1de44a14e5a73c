"""Project Pulse: AI-assisted project follow-up for CRM-driven workflows."""

__version__ = "1.0.0"
