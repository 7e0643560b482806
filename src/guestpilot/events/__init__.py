"""Background processing of platform events (queue, processor, arq worker)."""
