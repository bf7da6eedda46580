"""
Setuptools build script for askman.

This file allows installation of the ``askman`` package via
``pip install .``.  It declares the required dependencies and
registers a console script entry point named ``askman``.  When
installed, users can invoke the CLI with ``askman`` from their shell.

Test dependencies are available through the ``test`` extra:
``pip install -e .[test]``.
"""

from setuptools import setup, find_packages

setup(
    name="askman",
    version="0.1.0",
    description="Turn questions about command-line tools into commands, answered from their man pages",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "click>=7.0",
        "PyYAML>=5.4",
        "fastapi>=0.80",
        "uvicorn>=0.20",
        "pydantic>=1.10",
        "openai>=1.0",
        "requests>=2.28",
        "rich>=12.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-mock>=3.10",
            "httpx>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "askman=askman.cli:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
