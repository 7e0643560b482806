"""Core building blocks shared across GuestPilot services."""
