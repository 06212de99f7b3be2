"""Command-line entry points (``drawbot-convert``, ``drawbot-send``)."""
