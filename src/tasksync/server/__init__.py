"""Server module - Task server backing the Api store strain."""
