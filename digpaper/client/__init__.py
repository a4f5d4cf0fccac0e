"""Field client: durable upload queue and the engine that drains it."""
