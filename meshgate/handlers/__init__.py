"""Message handlers for the user and notification services."""
