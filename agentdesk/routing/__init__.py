"""Content analysis, agent matching and conversation assignment."""
