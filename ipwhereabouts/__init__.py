"""IP address management: address arithmetic, allocation, API records, configuration loading and logging."""

__version__ = "0.1.0"
__all__ = ["allocate", "api", "config", "iphelpers", "logs"]