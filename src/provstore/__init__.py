"""provstore - storage deal management and verification engine.

Packs datasets into content-addressed archives, negotiates and tracks storage
deals with remote providers, and verifies that providers still hold the data.
"""

__version__ = "0.3.0"
