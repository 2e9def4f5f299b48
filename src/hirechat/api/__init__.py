"""HTTP API for the HireChat sync service."""
