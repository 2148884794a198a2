#!/usr/bin/env python
"""Setup script for the forge_express package."""

from setuptools import setup, find_packages

setup(
    name="forge_express",
    version="0.1.0",
    description="Typed middleware pipeline, routing and ASGI serving for Express-style HTTP applications",
    author="Forge Framework",
    author_email="forge@example.com",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typing-extensions>=4.5.0",
        "kink>=0.7.0",
        "hypercorn>=0.15.0",
        "orjson>=3.9.0",
        "multidict>=6.0.0",
        "pyyaml>=6.0",
        "structlog>=23.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
        ],
    },
    python_requires=">=3.10",
)
