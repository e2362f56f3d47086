"""Face detector adapters and head pose helpers."""
