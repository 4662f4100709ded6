"""Concurrent exporter of Spotify playlists to CSV files."""

__version__ = "0.1.0"
