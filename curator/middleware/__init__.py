"""HTTP middleware and exception handling."""
