"""linkboard — multiplayer daily word-grouping puzzle companion for chat rooms."""

__version__ = "0.1.0"
