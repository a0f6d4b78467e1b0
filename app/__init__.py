"""HTTP layer for modelkit."""
