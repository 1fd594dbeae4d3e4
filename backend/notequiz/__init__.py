"""Notes-to-quiz study backend."""
