"""ffprobe metadata extraction."""
