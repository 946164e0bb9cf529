"""Visualization Package — debug figures of built KD-trees."""
