"""Server-side counting for GTM microsite tracking events."""

__version__ = "1.0.0"
