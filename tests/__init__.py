"""Test suite for NR Recorder."""
