"""Document text extraction, cleanup and token chunking."""
