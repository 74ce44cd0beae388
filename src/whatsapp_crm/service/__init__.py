"""
CRM services: ingestion, delivery status tracking and outbound sending.
"""
