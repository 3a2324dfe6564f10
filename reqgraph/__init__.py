"""
reqgraph: turn documents into a searchable graph of requirements.
"""

__version__ = "0.1.0"
