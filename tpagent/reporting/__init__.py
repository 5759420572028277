"""Name inference and the manual reporting API."""
