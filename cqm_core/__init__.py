"""Package lifecycle and OSGi configuration reconciliation for CQ/AEM instances."""

__version__ = "0.1.0"
