"""pocketpa — WhatsApp personal assistant with cached contacts, groups and history."""

__version__ = "0.1.0"
