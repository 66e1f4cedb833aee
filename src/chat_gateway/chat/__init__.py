"""Turn orchestration: routing, history, multiplexing and retry."""
