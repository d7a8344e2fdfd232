"""Wire encodings for readings and query results."""
