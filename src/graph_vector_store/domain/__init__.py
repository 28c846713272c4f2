"""
Domain Layer
============

Value objects, filter predicates and errors. No infrastructure
dependencies.
"""
