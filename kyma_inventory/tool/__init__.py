"""Command line tool for kyma-inventory."""
