"""
Test support utilities for relmap tests.

Entity classes and mapping declarations shared across test modules live in
``_support.models`` so that type hints resolve against a real module.
"""
