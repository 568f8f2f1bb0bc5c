"""charm: client for remote document transcription, chunking and summarization jobs."""

__version__ = "0.1.0"
