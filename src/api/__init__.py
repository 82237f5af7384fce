"""External service clients."""

from .cid_contact import CidContactChecker

__all__ = ["CidContactChecker"]
