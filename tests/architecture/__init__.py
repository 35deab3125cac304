"""Architecture validation tests.

These tests verify that the codebase follows architectural constraints
such as dependency direction between layers and port contracts.
"""
