"""Tree enhancement/reduction, bounds indexing, and comment matching."""
