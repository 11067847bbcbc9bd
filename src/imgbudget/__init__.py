"""imgbudget - find oversized images in a design document and shrink them to a byte budget."""

__version__ = "0.1.0"
