"""Reading IPSW archives, building IMG3/IMG4 images, JSON-to-plist conversion and file locking."""

__version__ = "0.1.0"

__all__ = ["img3", "img4", "ipsw", "jsmn", "json_plist", "locking"]