"""API endpoints package for the waiting room."""
