"""Agent session, reports delivery and command interception."""
