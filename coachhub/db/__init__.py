"""Supabase data access."""
