"""HTTP API, fallback reads and block ingestion."""
