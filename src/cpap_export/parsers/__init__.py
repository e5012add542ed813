"""Device loaders, profiles and session discovery."""
