"""Core infrastructure: logging, threading, settings and constants."""
