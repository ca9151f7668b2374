"""Infrastructure layer: settings, logging, persistence and gateway clients."""
