"""
Stock Photo Publishing Package

This package scans a local folder of images, captions and keywords each image
with AI services, and uploads the enriched images to stock photo platforms
through browser automation.
"""

__version__ = "1.0.0"
