"""Tests for askman."""
