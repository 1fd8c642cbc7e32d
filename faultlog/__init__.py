"""faultlog - bounded diagnostic log store, retry policies and fault hooks."""

__version__ = "0.1.0"
