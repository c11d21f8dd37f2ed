"""taskgate package."""
