"""Settings, logging, metrics and access helpers shared by the proxy."""
