"""Scheduler ACL API client and policy definitions."""
