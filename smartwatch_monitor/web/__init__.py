"""JSON web API for browsing notifications and adjusting configuration."""
