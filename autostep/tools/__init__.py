from .utilities import log_exceptions

__all__ = ["log_exceptions"]
