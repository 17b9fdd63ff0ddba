"""ReimburseMe subscription backend."""

__version__ = '0.1.0'
