"""Platform adapters: filesystem and HTTP."""
