"""Document fetching and text extraction."""
