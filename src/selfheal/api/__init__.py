"""HTTP endpoints exposing healing statistics and learned patterns."""
