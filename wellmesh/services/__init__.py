"""Service layer: token codec, caches and session lifecycle."""
