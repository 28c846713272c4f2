"""
Adapters Layer
==============

Concrete implementations of the ports for specific technologies.

Outbound Adapters:
- Neo4j vector store
"""
