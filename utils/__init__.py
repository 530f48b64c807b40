"""Image caching, decoding and helpers."""
