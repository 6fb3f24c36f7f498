"""Stream transport, visibility provider and timer scheduler."""
