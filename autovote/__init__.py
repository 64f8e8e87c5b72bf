"""autovote: adaptive challenge re-evaluation and vote/boost scheduling."""

__version__ = "1.0.0"
