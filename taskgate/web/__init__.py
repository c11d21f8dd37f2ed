"""WEB API for taskgate."""
