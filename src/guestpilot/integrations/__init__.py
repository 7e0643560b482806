"""Adapters for Hostaway and Twilio."""
