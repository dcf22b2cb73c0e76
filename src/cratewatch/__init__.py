#
# src/cratewatch/__init__.py
#
"""
cratewatch: keeps a live model of a Cargo workspace's tests and maps
`cargo test` output back onto it.
"""
