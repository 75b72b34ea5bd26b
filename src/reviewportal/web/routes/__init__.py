"""API route modules for Review Portal."""
