"""SQL expression helpers shared by the filter compiler and the pivot engine."""
