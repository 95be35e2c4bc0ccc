"""Terminal client for chatstream."""
