"""Parley Stage: end-to-end encrypted chat for a social network backend."""
