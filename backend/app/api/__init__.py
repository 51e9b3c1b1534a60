from .routes import pages, router

__all__ = ["pages", "router"]
