"""Field generation, brick planning and container assembly."""
