"""Analysis engine: symbol graph, analyzer passes and aggregation."""
