"""
Setup script for skill-tutor.

Skill Tutor is the backend of an AI mathematics tutor. It serves three roles:

1. Practice Engine - pool-first problem serving, grading and rank-up
2. Skill Map - prerequisite graph, recommendations and backtracking
3. Advisor - daily advice and stumble analysis from the learner's progress

The 'skill-tutor' command validates the catalog and runs the API server.
"""

from setuptools import find_packages, setup

setup(
    name="skill-tutor",
    version="0.1.0",
    description="AI tutoring backend: skill map, practice problems and mastery tracking",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="Skill Tutor",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    package_data={"src.catalog": ["data/*.json"]},
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy[asyncio]>=2.0.0",
        "psycopg2-binary>=2.9.0",
        "asyncpg>=0.29.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "httpx>=0.25.0",
        # Generative AI (Vertex AI)
        "google-genai>=1.51.0",
        "google-auth>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "aiosqlite>=0.19.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "skill-tutor=src.cli.tutor_cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Framework :: FastAPI",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="tutoring mathematics mastery learning education",
)
