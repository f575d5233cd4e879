"""
Test suite for the telehealth API and session client.

Covers the HTTP routes end to end, the token issuer, and the async session
controller against both a fake transport and the in-process application.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
