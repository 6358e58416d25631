"""Services layer - collaborators the engine talks to."""
