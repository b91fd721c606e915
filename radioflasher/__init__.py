"""
Project Name: Radioflasher
Copyright (c) 2025 Henrik Olsson

Permission is hereby granted under MIT license.
"""

__version__ = "0.1.0"
