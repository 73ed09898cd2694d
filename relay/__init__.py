# relay/__init__.py
"""Service command relay: directive ingress (Redis list + HTTP) → executor work orders."""

__version__ = "1.0.0"
