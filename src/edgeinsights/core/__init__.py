"""Core domain: models, validation, routing and tier selection.

Nothing in this package performs I/O.
"""
