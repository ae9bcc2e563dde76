"""Graph storage backends, traversal and the typed entity layer."""
