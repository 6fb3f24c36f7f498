"""Stream protocol: connection state, backoff, event payloads."""
