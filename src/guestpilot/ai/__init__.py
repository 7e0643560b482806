"""Intent classification, context retrieval, reply generation and escalation."""
