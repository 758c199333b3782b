"""
Test support utilities for kvspine tests.

Helpers that are not fixtures themselves but back several fixtures, such
as the in-process CouchDB stand-in served through ``httpx.MockTransport``.
"""
