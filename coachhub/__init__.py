"""Coach Hub backend: teams, film, play tagging, analytics and billing."""

__version__ = "1.0.0"
