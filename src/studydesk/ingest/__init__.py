"""Document ingestion: extraction, chunking, batching and coordination."""
