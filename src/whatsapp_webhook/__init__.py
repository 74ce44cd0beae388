"""WhatsApp webhook and agent API service."""
