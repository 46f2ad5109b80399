"""Test fixtures for the IDM request scheduler."""
