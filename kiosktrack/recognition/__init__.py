"""Identification backends and request throttling."""
