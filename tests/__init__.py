"""Tests for delegation-coordinator."""
