"""
nutriscan - food identification and nutrition resolution pipeline.

Turns a photo or barcode observation into a nutrition record with a
confidence tier, by walking an ordered chain of external providers.
"""

__version__ = "0.1.0"
