"""Config-driven N64 ROM splitter: ROM image in, assembler listing and assets out."""

__version__ = "0.1.0"
