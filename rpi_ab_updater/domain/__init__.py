"""Domain objects for partition sets, identifiers and image layouts."""
