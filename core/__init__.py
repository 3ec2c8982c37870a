"""Core module - ERP-neutral models, configuration, storage and observability.

This module holds the document and session models, the artifact store and
the logging/metrics helpers. It is intentionally ERP-agnostic.

ERP-specific logic (SAP Business One, etc.) belongs in /connectors/.
"""

__version__ = "1.0.0"
