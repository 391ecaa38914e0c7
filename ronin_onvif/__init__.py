"""ronin-onvif - async ONVIF client with PullPoint event subscriptions."""

__version__ = "0.1.0"
