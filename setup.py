from setuptools import setup, find_packages

setup(
    name="explorer-backend",
    version="0.1.0",
    packages=find_packages(include=["blockchain", "cache", "config", "explorer"]),
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "pydantic-settings",
        "structlog",
        "redis>=5.0.1",
        "sqlalchemy>=1.4",
        "prometheus-client",
        "aiohttp",
        "slowapi"
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx"
        ],
    },
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "explorer-api=explorer.main:main",
        ],
    }
)
