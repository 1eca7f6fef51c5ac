"""addingcat: a terminal photo-feed client for a hosted Supabase backend."""

__version__ = "0.3.0"
