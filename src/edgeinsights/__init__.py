"""Edge insights: device telemetry ingestion with rollup-aware natural-language queries."""
