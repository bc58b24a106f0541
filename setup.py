"""
TaskTrack setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="tasktrack",
    version="1.0.0",
    description="TaskTrack — access-controlled task tracking core",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "tasktrack=tasktrack.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
