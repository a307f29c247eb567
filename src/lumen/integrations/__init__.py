"""External services reachable from tools."""
