"""Versioned rule matrices shipped with edgeline."""
