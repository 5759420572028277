"""Addon actions executed by the Agent."""
