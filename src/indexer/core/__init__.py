"""Process-wide infrastructure: database engine, logging, and monitoring."""
