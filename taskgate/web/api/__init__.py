"""taskgate API package."""
