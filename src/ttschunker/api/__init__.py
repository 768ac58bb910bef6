"""HTTP surface for chunked synthesis."""
