"""Tests for the kyma-inventory command line tool."""
