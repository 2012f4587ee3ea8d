"""Remote synchronization: operations, error handling and the write queue."""
