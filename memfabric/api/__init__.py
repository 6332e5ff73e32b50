"""HTTP surface for collaborators."""
