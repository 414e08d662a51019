"""AirPlay 2 receiver recipe (Shairport Sync with NQPTP)."""
