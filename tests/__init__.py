"""Test suite for the channel pipeline."""
