"""Scheduled ingestion of Limitless lifelogs into a local store."""
