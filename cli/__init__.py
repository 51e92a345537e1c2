"""Command-line sub-apps for deferload."""
