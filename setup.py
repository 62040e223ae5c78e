"""Setup script for the climadash package."""

from setuptools import find_packages, setup

setup(
    name="climadash",
    version="0.1.0",
    description="Device telemetry dashboard backend and OTA firmware server",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pyyaml",
        "python-dotenv",
        "paho-mqtt>=2.0.0",
        "aiohttp>=3.9",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio",
            "black",
            "isort",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "climadash-server=climadash.server:main",
        ],
    },
)
