"""Vector storage, search and index lifecycle."""
