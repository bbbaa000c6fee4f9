"""Analyzer passes. Each exposes ``run(graph, config) -> PassResult``."""
