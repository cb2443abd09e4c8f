"""kv-postings: a search index's postings and doc values on an ordered key-value store."""

__version__ = "0.1.0"
