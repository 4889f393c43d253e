from setuptools import setup, find_packages

setup(
    name="whereabouts",
    version="0.1.0",
    description="Scheduled city-level location sampling service",
    package_dir={"": "backend"},
    packages=find_packages(where="backend"),
    python_requires=">=3.10",
    install_requires=[
        "httpx>=0.23",
        "fastapi>=0.95",
        "uvicorn>=0.22",
        "python-dateutil>=2.8",
        "geopy>=2.4",
        "python-dotenv>=1.0",
        "slowapi>=0.1.8",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "pytest-httpx>=0.23",
        ],
        "lint": [
            "black>=23.0",
            "flake8>=6.0",
        ],
    },
)
