"""HTTP surface for shiprates."""
