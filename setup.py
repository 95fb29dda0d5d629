"""
Setup script for the leadgen project.

Allows development installation with `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name="leadgen",
    version="0.1.0",
    packages=find_packages(include=["leadgen", "leadgen.*"]),
    python_requires=">=3.11",
    install_requires=[
        "python-dotenv>=1.0",
        "pymongo>=4.6",
        "pydantic>=2.5",
        "tenacity>=8.2",
        "langchain-core>=0.3",
        "langchain-openai>=0.2",
        "httpx>=0.27",
        "json-repair>=0.30",
        "fastapi>=0.110",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "pytest-mock>=3.12",
        ],
    },
)
