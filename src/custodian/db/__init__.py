"""Database layer: models, engine/session configuration and read-path filters."""
