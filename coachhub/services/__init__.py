"""Service modules for film, tagging, analytics and billing."""
