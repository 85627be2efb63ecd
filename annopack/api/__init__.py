"""HTTP API for annopack."""
