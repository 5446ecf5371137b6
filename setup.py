"""
Setup script for the queue service.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="queue-service",
    version="1.0.0",
    packages=find_packages(include=["queue_service", "queue_service.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110.0",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "pymongo>=4.13.0",
        "redis>=5.0.1",
        "uvicorn>=0.27.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.26.0",
        ],
    },
)
