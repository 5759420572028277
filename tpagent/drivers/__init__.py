"""Selenium drivers attached to Agent sessions."""
