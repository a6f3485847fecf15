"""Tab-driven feed automation runner.

Drives a persistent Chromium session through a feed page with the keyboard,
asks an external decision service whether each item is worth acting on, and
inserts generated content through a verified multi-step sequence.
"""

__version__ = "0.1.0"
