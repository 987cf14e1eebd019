"""ChannelFinder: a directory of channels with tags and properties."""

__version__ = "1.0.0"
