"""Infrastructure adapters (store pool, redis, live feed)."""
