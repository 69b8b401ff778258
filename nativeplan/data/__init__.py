"""Checked-in data files shipped with the resolver."""
