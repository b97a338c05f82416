"""
Setup script for leetnode-recommender.

The recommender is the adaptive practice engine behind the LeetNode
course platform. It serves three roles:

1. Question generation - Evaluates authored variables and methods into
   randomized question instances with computed answers and distractors
2. Mastery tracking - Maintains a per-topic mastery estimate for every
   learner and flags learners who keep getting questions wrong
3. Recommendation - Serves the next question from the learner's weakest topic

The 'leetnode' command exposes the engine for content loading and
local inspection.
"""

from setuptools import find_packages, setup

setup(
    name="leetnode-recommender",
    version="1.0.0",
    description="Adaptive question recommendation and mastery estimation engine",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="LeetNode",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        "psycopg2-binary>=2.9.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "leetnode=recommender.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning adaptive recommender mastery education",
)
