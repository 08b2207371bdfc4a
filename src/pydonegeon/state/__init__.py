"""State/store layer.

This package is the single source of truth for how pulled data is merged
into the local replica of the server's collections. Nothing outside the
sync coordinator writes to it.
"""
