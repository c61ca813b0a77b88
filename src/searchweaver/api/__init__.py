"""HTTP API for SearchWeaver."""
