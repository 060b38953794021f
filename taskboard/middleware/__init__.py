"""Request middleware: logging, timing, JWT identity, rate limits."""
