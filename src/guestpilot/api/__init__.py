"""HTTP surface: webhooks, knowledge management, health and metrics."""
