from . import accounts, cart, courses, ebooks, progress, purchases

__all__ = ["accounts", "cart", "courses", "ebooks", "progress", "purchases"]
