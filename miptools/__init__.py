"""A toy shell, a parallel text search tool, and assemblers and virtual machines for two teaching instruction sets."""

__version__ = "0.1.0"