"""Video playback and interactive-question orchestration for course videos."""
