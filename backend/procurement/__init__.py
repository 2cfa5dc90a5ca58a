"""Multi-supplier procurement negotiation core."""

__version__ = "0.1.0"
