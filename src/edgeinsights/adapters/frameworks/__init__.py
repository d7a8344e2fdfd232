"""Web framework adapters exposing the ingestion channel and query endpoints."""
