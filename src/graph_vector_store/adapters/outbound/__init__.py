"""Outbound adapters for Neo4j."""
