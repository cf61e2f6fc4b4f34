"""Client for resolving device properties from the DeviceAtlas cloud service."""

__version__ = "2.0.0"
