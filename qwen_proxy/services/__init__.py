"""Service layer: authentication, endpoint resolution and upstream forwarding."""
