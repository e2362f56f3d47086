"""Face tracking state machine and per-frame association."""
