"""Scheduled AWS Health event digest with S3-backed change detection."""

__version__ = "1.0.0"
