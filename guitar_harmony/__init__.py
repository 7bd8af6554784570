"""Guitar Harmony - catalog of songs in progress, guitars and recordings."""
