"""Core domain package for roomwatch.

Core contains timeline scanning, read-state reconciliation, unread counting
and trigger debouncing without any Matrix or storage-specific code, keeping
the business logic portable.
"""
