"""Infrastructure adapters: HTTP, SSE, storage, timers."""
