"""Service layer: connection lifecycle, dispatch, store, polling."""
