"""ChatLake: a durable archive of chat exports with derived project discovery."""

__version__ = "0.1.0"
