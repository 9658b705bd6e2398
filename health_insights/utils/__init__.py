"""Upload decoding and PDF export helpers."""
