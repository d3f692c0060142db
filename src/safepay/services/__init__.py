"""Background services built on the provider core."""
