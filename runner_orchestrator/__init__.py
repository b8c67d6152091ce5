"""Graceful stop of GitHub Actions runner pods."""
