"""Process-level helpers: delays, scheduling, locking, path translation."""
