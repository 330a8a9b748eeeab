#!/usr/bin/env python3
"""Setup script for the content curation core."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="content-curator-core",
    version="0.1.0",
    author="Curation Team",
    author_email="team@example.com",
    description="URL canonicalization, rule-based tagging and feed ranking for multi-site content curation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/content-curator-core",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
        "Topic :: Text Processing :: Indexing",
    ],
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.2",
        "selectolax>=0.3.21",
        "structlog>=24.1",
        "sqlalchemy>=2.0",
        "click>=8.2",
        "pyyaml>=6.0",
        "rich>=13.7.1",
    ],
    extras_require={
        "dev": [
            "pytest>=8.2",
            "ruff>=0.4",
            "mypy>=1.10",
            "coverage>=7.5",
            "pytest-cov>=4.1",
            "types-PyYAML",
        ]
    },
    entry_points={
        "console_scripts": [
            "curator=curator.orchestrator:cli",
        ],
    },
    include_package_data=True,
)
