from . import contacts, identify

__all__ = ["contacts", "identify"]
