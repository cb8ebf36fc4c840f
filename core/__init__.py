"""Core module - cross-cutting services.

Holds the pieces every other package leans on: audit sink, shared pydantic
models and observability (logging, metrics). Nothing in here knows about the
quantity matrix itself; that lives in /separation_engine/.
"""

__version__ = "1.0.0"
