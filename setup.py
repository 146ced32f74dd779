#!/usr/bin/env python3
"""Setup script for the Virus Combat client."""

from setuptools import setup, find_packages
import os

# Read README for long description
def read_readme():
    with open("README.md", "r", encoding="utf-8") as fh:
        return fh.read()

# Get requirements
def read_requirements():
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip() and not line.startswith("#")]

# Get version
def get_version():
    version_file = "VERSION"
    if os.path.exists(version_file):
        with open(version_file, "r", encoding="utf-8") as f:
            return f.read().strip()
    return "0.1.0-dev"

setup(
    name="virus-combat-client",
    version=get_version(),
    author="Randy",
    description="Turn-based networked card combat client core with Qt event loop integration",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["combat", "combat.*", "room", "room.*"]),
    py_modules=["main"],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Games/Entertainment",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
    install_requires=read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov",
        ],
    },
    entry_points={
        "console_scripts": [
            "virus-combat=main:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
