"""Unit tests for askman."""
