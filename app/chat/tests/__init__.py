"""
Tests for the messaging app.

Service modules (test_threads, test_messages, test_attachments,
test_presence, test_preferences) call the services directly. test_views
goes through the single messaging endpoint, test_consumers through the
WebSocket stack. test_client and test_reconciliation cover the client side
without a database.

Usage:
    pytest chat/tests/
    pytest chat/tests/test_consumers.py
"""
