"""Translation between the caller vocabulary and the app-server vocabulary."""
