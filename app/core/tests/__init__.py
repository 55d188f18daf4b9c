"""Tests for the shared service and error layer."""
