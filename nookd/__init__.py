"""nookd — hourly game music with rain ambiance."""

__version__ = "0.3.0"
