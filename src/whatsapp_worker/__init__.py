"""WhatsApp ingestion worker (stream dispatch mode)."""
