#!/usr/bin/env python3
"""
Slot Router Setup Script
========================
Allows installation of the slot-router package.

Usage:
    pip install -e .           # Development install
    pip install -e .[test]     # With the test dependencies
"""

from setuptools import setup, find_packages

setup(
    name="slot-router",
    version="1.0.0",
    packages=find_packages(include=["slotrouter", "slotrouter.*"]),
    python_requires=">=3.10",
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
