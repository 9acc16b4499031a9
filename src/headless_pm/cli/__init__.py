"""Command-line sub-commands for Headless PM."""
