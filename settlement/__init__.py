"""Signal settlement service: storage, upstream clients, services and API."""
