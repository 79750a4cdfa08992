"""tone-deployer: watch a natural-language deployment request play out step by step."""

__version__ = "0.1.0"
