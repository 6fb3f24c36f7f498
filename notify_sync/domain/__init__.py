"""Domain types: stream events, notifications, snapshot diffs."""
