"""HTTP API for the case reference service."""
