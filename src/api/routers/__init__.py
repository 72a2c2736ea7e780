"""API routers for the skill-tutor service."""
